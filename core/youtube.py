"""
YouTube URL helpers
"""

import re
from typing import Optional
from urllib.parse import urlparse, parse_qs

import structlog

# Configure structured logger
logger = structlog.get_logger(__name__)

_VIDEO_ID = re.compile(r'^[A-Za-z0-9_-]{11}$')

_YOUTUBE_HOSTS = ('www.youtube.com', 'youtube.com', 'm.youtube.com', 'music.youtube.com')
_SHORT_HOSTS = ('youtu.be', 'www.youtu.be')


def extract_video_id(url: str) -> Optional[str]:
    """Extract the 11-character YouTube video ID from various URL formats"""
    if not url or not url.strip():
        return None

    try:
        parsed_url = urlparse(url.strip())
        candidate = None

        if parsed_url.hostname in _YOUTUBE_HOSTS:
            if parsed_url.path == '/watch':
                candidate = parse_qs(parsed_url.query).get('v', [None])[0]
            elif parsed_url.path.startswith(('/embed/', '/v/', '/shorts/', '/live/')):
                candidate = parsed_url.path.split('/')[2]
        elif parsed_url.hostname in _SHORT_HOSTS:
            candidate = parsed_url.path[1:].split('/')[0]

        if candidate and _VIDEO_ID.match(candidate):
            return candidate
        return None
    except Exception as e:
        logger.error("Failed to extract video ID", url=url, error=str(e))
        return None

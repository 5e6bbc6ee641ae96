"""
Core business logic modules for Transcript Studio

This package contains the core functionality modules:
- transcript.py: SRT text → timed segments
- recording.py: local audio capture lifecycle → MP3 clip
- ingest.py: file or clip → uploaded, processing task
- watcher.py: remote status → reconciled local task
- orchestrator.py: user actions → active task state
- api.py: HTTP client for the task service
"""

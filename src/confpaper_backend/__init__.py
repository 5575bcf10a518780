"""
Conference Paper Backend - REST API for paper submission

This package provides a FastAPI-based web service for submitting and
retrieving conference papers. It enables:

- Paper search and retrieval as JSON
- Paper creation and updates from web forms, JSON, or ZIP archives
  carrying a JSON manifest plus document files
- Per-field validation messages instead of all-or-nothing failures
- Dry runs that report what a save would change
- Content-addressed document storage with an optional S3 mirror

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - paper_api: Request dispatch and response shaping for /api/paper
    - paper_status: Validation and saving of paper updates
    - paper_export, paper_search: Paper JSON rendering and search
    - conference: Configuration, storage and account access point
    - database, docstore, contacts: Persistence layers
    - batch: Bulk JSON import

Usage:
    Run the API server with:
        uvicorn confpaper_backend.main:app --reload --host 0.0.0.0 --port 8000
"""

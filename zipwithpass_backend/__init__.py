"""Backend utilities for the password-protected ZIP service.

This package keeps the FastAPI route handler thin:
- per-request ephemeral workspaces with guaranteed cleanup
- streaming multipart ingestion into the workspace
- archiving through a swappable capability (Info-ZIP subprocess or pyzipper)

Security note:
The archive password must never be logged or echoed in a response, and
error bodies never expose filesystem paths.
"""

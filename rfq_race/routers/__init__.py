"""
routers/ — FastAPI route modules.

Each file contains a thin APIRouter. All race decisions live in
services/. Routers resolve the caller, call services, and map
service error codes to HTTP.
"""

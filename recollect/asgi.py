"""
Process entrypoint.

    uvicorn recollect.asgi:app --host 0.0.0.0 --port 8080
"""

from recollect.main import create_app

app = create_app()

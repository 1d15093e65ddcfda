"""ASGI entrypoint.

Run with ``uvicorn ai_governance.main:app`` or ``python -m ai_governance.main``.
"""

import uvicorn

from ai_governance.core.app_factory import create_app

app = create_app()


if __name__ == "__main__":
    uvicorn.run("ai_governance.main:app", host="0.0.0.0", port=8000)

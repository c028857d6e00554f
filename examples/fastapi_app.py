"""Minimal FastAPI app using the per-request Calq session.

    CALQ_WRITE_KEY=... uvicorn examples.fastapi_app:app
"""
from fastapi import Depends, FastAPI

from calq import CalqClient
from calq.logging_config import configure_logging
from calq.web import CalqMiddleware, calq_session

configure_logging()
app = FastAPI(title="Calq example")
app.add_middleware(CalqMiddleware)


@app.get("/")
def index(calq: CalqClient = Depends(calq_session())):
    calq.track("Page View", {"page": "index"})
    return {"actor": calq.actor, "anonymous": calq.is_anonymous}


@app.post("/login/{user_id}")
def login(user_id: str, calq: CalqClient = Depends(calq_session())):
    calq.identify(user_id)
    calq.track("Login")
    return {"actor": calq.actor}


@app.post("/logout")
def logout(calq: CalqClient = Depends(calq_session())):
    calq.clear()
    return {"actor": calq.actor}

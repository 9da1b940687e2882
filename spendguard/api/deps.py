from typing import Optional
from fastapi import Header, HTTPException, Request
from spendguard.config import AppConfig


def get_owner_id(x_owner_id: Optional[str] = Header(None)) -> str:
    """Owner of the request, taken from the X-Owner-Id header."""
    if not x_owner_id or not x_owner_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-Owner-Id header")
    return x_owner_id.strip()


def get_config(request: Request) -> AppConfig:
    config = getattr(request.app.state, "config", None)
    if config is None:
        config = AppConfig.from_env()
        request.app.state.config = config
    return config


def get_classifier(request: Request):
    return getattr(request.app.state, "classifier", None)

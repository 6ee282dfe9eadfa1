from fastapi import APIRouter, Body
from typing import Dict, Any
from chatsift.services.config_service import config_service

router = APIRouter()

@router.get("/search")
def get_search_config():
    # Never expose the index password via GET
    raw = config_service.get_search_config()
    redacted = dict(raw)
    if redacted.get("elasticsearch_password"):
        redacted["elasticsearch_password"] = ""
    return redacted

@router.post("/search")
def update_search_config(config: Dict[str, Any] = Body(...)):
    updated = config_service.update_search_config(config)
    return {k: ("" if k == "elasticsearch_password" else v) for k, v in updated.items()}

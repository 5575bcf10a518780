from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from .conference import Conf
from .contacts import Contact
from .json_result import JsonResult
from .paper_api import PaperAPI
from .qrequest import Qrequest

conf = Conf.from_config()

logging.basicConfig(
    level=conf.config.logging.level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Conference Paper API", version="0.1.0")

allowed_origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_conf() -> Conf:
    return conf


def get_current_user(
    x_api_key: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
    conf: Conf = Depends(get_conf),
) -> Contact:
    key = x_api_key
    if not key and authorization and authorization.lower().startswith("bearer "):
        key = authorization[7:].strip()
    if not key:
        raise HTTPException(status_code=401, detail="API key required")
    user = conf.contacts.validate_key(key)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return user


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/settings")
def get_settings(
    user: Contact = Depends(get_current_user),
    conf: Conf = Depends(get_conf),
) -> Dict[str, Any]:
    return {"ok": True, "settings": conf.describe()}


def handle_paper_request(conf: Conf, user: Contact, qreq: Qrequest) -> JsonResult:
    """Resolve ``p`` and run the paper API. Blocks, so it runs in a worker thread."""
    prow, whynot = conf.resolve_paper_param(user, qreq.get("p"))
    if whynot is not None:
        qreq.set_annex("paper_whynot", whynot)
    return PaperAPI.run(user, qreq, prow)


@app.api_route("/api/paper", methods=["GET", "POST"])
async def paper_api(
    request: Request,
    user: Contact = Depends(get_current_user),
    conf: Conf = Depends(get_conf),
) -> JSONResponse:
    qreq = await Qrequest.from_request(request)
    try:
        jr = await run_in_threadpool(handle_paper_request, conf, user, qreq)
    finally:
        qreq.cleanup()
    if jr.status >= 400:
        logger.info(f"{request.method} /api/paper by {user.email}: {jr.status}")
    return jr.to_response()

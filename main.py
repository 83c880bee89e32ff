import asyncio
import json
import logging
from typing import Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from ai_agent import GeoAssistantAgent
from auth import BaseAuthenticator, RemoteAuthenticator, StaticTokenAuthenticator, parse_bearer
from chat_store import BaseChatStore, HttpChatStore, InMemoryChatStore
from config import config
from engine import LLMEngine
from errors import AssistantServiceError, AuthenticationFailure
from models import ChatRequest
from quota import BaseUsageStore, HttpUsageStore, InMemoryUsageStore, QuotaGate
from remote_services import AnalysisBackendClient, RetrievalClient
from tools import GeoAssistantTools
from transcript import TranscriptPersistence

LOCAL_USER_ID = "local-user"
FORWARDED_HEADERS = ("cookie", "authorization")

# Logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)

config.validate()

# FastAPI app
app = FastAPI(title="Geospatial Assistant", description="Chat assistant for geospatial analysis", version="1.0.0")
app.add_middleware(CORSMiddleware, allow_origins=config.get_cors_origins(), allow_credentials=True, allow_methods=["*"], allow_headers=["*"])


########################
# Collaborators        #
########################

def build_authenticator() -> BaseAuthenticator:
    if config.AUTH_SERVICE_URL:
        return RemoteAuthenticator(config.AUTH_SERVICE_URL)
    # Local mode: the shared service key doubles as the one valid user token
    return StaticTokenAuthenticator({config.SERVICE_API_KEY: LOCAL_USER_ID} if config.SERVICE_API_KEY else {})


def build_usage_store() -> BaseUsageStore:
    if config.USAGE_SERVICE_URL:
        return HttpUsageStore(config.USAGE_SERVICE_URL, config.SERVICE_API_KEY)
    store = InMemoryUsageStore()
    store.set_user(LOCAL_USER_ID, "admin", "*")
    return store


def build_chat_store() -> BaseChatStore:
    if config.CHAT_STORE_URL:
        return HttpChatStore(config.CHAT_STORE_URL, config.SERVICE_API_KEY)
    return InMemoryChatStore()


def build_agent(chat_store: BaseChatStore) -> GeoAssistantAgent:
    tools = GeoAssistantTools(
        AnalysisBackendClient(config.ANALYSIS_BASE_URL, timeout=config.REMOTE_TIMEOUT_S),
        RetrievalClient(config.RAG_SERVICE_URL, config.SERVICE_API_KEY, timeout=config.REMOTE_TIMEOUT_S),
        LLMEngine(config.REPORT_MODEL),
    )
    return GeoAssistantAgent(LLMEngine(config.DEFAULT_MODEL), tools, chat_store, TranscriptPersistence(chat_store))


authenticator = build_authenticator()
quota_gate = QuotaGate(build_usage_store())
agent = build_agent(build_chat_store())


# Dependency providers (overridden in tests)
def get_authenticator() -> BaseAuthenticator:
    return authenticator


def get_quota_gate() -> QuotaGate:
    return quota_gate


def get_agent() -> GeoAssistantAgent:
    return agent


async def authenticated_user(
    authorization: Optional[str] = Header(None),
    auth: BaseAuthenticator = Depends(get_authenticator),
) -> str:
    token = parse_bearer(authorization)
    user_id = await asyncio.to_thread(auth.authenticate, token) if token else None
    if not user_id:
        raise AuthenticationFailure("Unauthenticated!")
    return user_id


@app.exception_handler(AssistantServiceError)
async def assistant_error_handler(request: Request, exc: AssistantServiceError):
    return JSONResponse(status_code=exc.http_status, content=exc.to_payload())


@app.get("/")
async def root():
    return {"status": "healthy", "service": "geo-assistant", "version": "1.0.0"}


@app.post("/api/chat")
async def chat(
    request: ChatRequest,
    req: Request,
    user_id: str = Depends(authenticated_user),
    gate: QuotaGate = Depends(get_quota_gate),
    assistant: GeoAssistantAgent = Depends(get_agent),
):
    user = await asyncio.to_thread(gate.authorize, user_id)

    try:
        await assistant.prepare_turn(request, user)
    except Exception as e:
        logger.exception("Chat bookkeeping failed for chat %s: %s", request.chat_id, e)
        raise HTTPException(status_code=500, detail="Failed to save chat")

    forward_headers: Dict[str, str] = {}
    for name in FORWARDED_HEADERS:
        value = req.headers.get(name)
        if value:
            forward_headers[name] = value

    async def generate_stream():
        try:
            async for event in assistant.run_turn(request, user, forward_headers):
                yield f"data: {json.dumps(event, default=str)}\n\n"
            yield "data: [DONE]\n\n"
        except asyncio.CancelledError:
            logger.info("Streaming cancelled for chat %s", request.chat_id)
            raise

    return StreamingResponse(generate_stream(), media_type="text/event-stream", headers={"Cache-Control": "no-cache", "Connection": "keep-alive"})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.SERVICE_HOST, port=config.SERVICE_PORT)

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")
from fastapi.middleware.cors import CORSMiddleware

from procurement import config
from procurement.database import SessionLocal, engine
from procurement.models.base import Base
import procurement.models  # noqa: F401 - register all tables for create_all
from procurement.api.endpoints import proposals, realtime, rfps, vendors
from procurement.services.ai_service import get_oracle
from procurement.services.fanout import ChannelHub
from procurement.services.gmail_client import GmailClient
from procurement.services.ingestion import ProposalPipeline
from procurement.services.mailer import get_mailer
from procurement.services.push_listener import PushListener

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    app.state.hub = ChannelHub()
    app.state.pipeline = ProposalPipeline(get_oracle(), app.state.hub)
    app.state.mailer = get_mailer()
    app.state.push_listener = None
    gmail = None
    if config.gmail_configured():
        gmail = GmailClient(config.GMAIL_CLIENT_ID, config.GMAIL_CLIENT_SECRET, config.GMAIL_REFRESH_TOKEN,
                            user=config.GMAIL_USER)
        listener = PushListener(
            gmail,
            app.state.pipeline,
            SessionLocal,
            mailbox_name=config.GMAIL_USER,
            topic=config.GMAIL_PUBSUB_TOPIC or None,
            renewal_fraction=config.WATCH_RENEWAL_FRACTION,
            bootstrap_limit=config.BOOTSTRAP_SCAN_LIMIT,
        )
        listener.start()
        app.state.push_listener = listener
    else:
        logger.warning("Gmail credentials not configured; mailbox push listener disabled")
    logger.info("Procurement backend started (ai_provider=%s)", config.ai_provider())
    yield
    if app.state.push_listener is not None:
        await app.state.push_listener.stop()
    if gmail is not None:
        await gmail.aclose()


app = FastAPI(title="Procurement Assistant API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rfps.router)
app.include_router(vendors.router)
app.include_router(proposals.router)
app.include_router(realtime.router)


@app.get("/health")
def health():
    """Health check endpoint for load balancers and readiness probes."""
    return {
        "status": "ok",
        "service": "procurement-backend",
        "ai_provider": config.ai_provider(),
        "mailbox": "gmail" if config.gmail_configured() else "disabled",
    }

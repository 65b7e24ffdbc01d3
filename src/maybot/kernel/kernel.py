"""
kernel/kernel.py — AgentKernel

Single assembly point that wires every maybot sub-system into a ready-to-use
kernel object. Interfaces (the console REPL, a chat adapter) and integration
tests obtain an Orchestrator by calling AgentKernel.build(settings) rather
than constructing the pieces themselves.

Two SQLite files are opened:

  state db : credentials, emotional_state, interaction_events, action_logs,
             chat_messages. Engine-owned; the model never reaches it.
  app db   : the data the model inspects and edits through the SQL tools.

Usage::

    from maybot.kernel import AgentKernel
    from maybot.config.settings import load_settings

    settings = load_settings()
    kernel   = await AgentKernel.build(settings)
    reply    = await kernel.orchestrator.process_message(message)
    await kernel.shutdown()
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from maybot.affect.engine import AffectEngine
from maybot.affect.model import DecayConfig, PersonalityProfile
from maybot.affect.service import AffectService
from maybot.affect.store import EmotionStore
from maybot.agent.chat import ChatClient
from maybot.agent.orchestrator import Orchestrator
from maybot.brain.pooled_client import PooledLLMClient
from maybot.credentials.pool import CredentialPool
from maybot.credentials.store import CredentialStore
from maybot.datastore.conversation_log import ConversationLog
from maybot.datastore.database import Database
from maybot.datastore.query_executor import QueryExecutor
from maybot.datastore.schema import STATE_SCHEMA
from maybot.exceptions import CredentialError, MayBotError
from maybot.observability.logger import get_logger
from maybot.tools.dispatcher import ToolDispatcher

log = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# KernelConfig: typed subset of Settings consumed by the kernel
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class KernelConfig:
    """Typed configuration surface for the kernel's own wiring decisions."""
    provider: str
    model: str
    state_path: str
    app_path: str
    app_schema_file: Optional[str]
    rpm_limit: int
    rpd_limit: int
    base_url: Optional[str]
    llm_timeout_seconds: float
    scope_mode: str
    base_decay_rate: float

    @classmethod
    def from_settings(cls, settings) -> "KernelConfig":
        return cls(
            provider=settings.llm.provider,
            model=settings.llm.model,
            state_path=settings.database.state_path,
            app_path=settings.database.sqlite_path,
            app_schema_file=settings.database.app_schema_file,
            rpm_limit=settings.credentials.rpm_limit,
            rpd_limit=settings.credentials.rpd_limit,
            base_url=settings.gemini_proxy,
            llm_timeout_seconds=settings.llm.timeout_seconds,
            scope_mode=settings.affect.scope_mode,
            base_decay_rate=settings.affect.base_decay_rate,
        )


# ─────────────────────────────────────────────────────────────────────────────
# AgentKernel
# ─────────────────────────────────────────────────────────────────────────────

class AgentKernel:
    """
    Fully assembled maybot kernel.

    The Orchestrator is the entry point for interfaces; the other attributes
    are exposed for operator commands and tests.

    Do not instantiate directly — use AgentKernel.build(settings).
    """

    def __init__(
        self,
        config: KernelConfig,
        state_db: Database,
        app_db: Database,
        pool: CredentialPool,
        llm_client: PooledLLMClient,
        affect: AffectService,
        dispatcher: ToolDispatcher,
        orchestrator: Orchestrator,
    ) -> None:
        self.config       = config
        self.state_db     = state_db
        self.app_db       = app_db
        self.pool         = pool
        self.llm_client   = llm_client
        self.affect       = affect
        self.dispatcher   = dispatcher
        self.orchestrator = orchestrator

    # ─────────────────────────────────────────────────────────────────────────
    # Factory
    # ─────────────────────────────────────────────────────────────────────────

    @classmethod
    async def build(cls, settings, chat: Optional[ChatClient] = None) -> "AgentKernel":
        """
        Assemble the full kernel from a Settings instance.

        Raises MayBotError (or a typed subclass) if any sub-system fails to
        initialise. Databases opened before the failure are closed again.
        """
        log.info("kernel.build.start")
        cfg = KernelConfig.from_settings(settings)

        # ── Databases ────────────────────────────────────────────────────────
        state_db = Database(cfg.state_path, schema=STATE_SCHEMA)
        app_db = Database(cfg.app_path, schema=_read_app_schema(cfg.app_schema_file))
        try:
            await state_db.init()
            await app_db.init()
            log.info("kernel.databases_ready", state=cfg.state_path, app=cfg.app_path)

            # ── Credential pool ──────────────────────────────────────────────
            keys = settings.gemini_api_keys()
            store = CredentialStore(state_db)
            await store.seed(keys, rpm_limit=cfg.rpm_limit, rpd_limit=cfg.rpd_limit)
            await store.deactivate_missing(label for label, _ in keys)
            pool = CredentialPool.from_settings(store, settings)
            if await pool.refresh() == 0:
                raise CredentialError("No active provider credentials after seeding.")
            log.info("kernel.pool_ready", keys=pool.size)

            # ── LLM client ───────────────────────────────────────────────────
            llm_client = PooledLLMClient(
                pool,
                provider=cfg.provider,
                base_url=cfg.base_url,
                timeout_seconds=cfg.llm_timeout_seconds,
            )
            log.info("kernel.llm_ready", provider=cfg.provider, model=cfg.model)

            # ── Affect ───────────────────────────────────────────────────────
            engine = AffectEngine(
                PersonalityProfile.from_settings(settings),
                decay_config=DecayConfig(base_rate=cfg.base_decay_rate),
            )
            affect = AffectService(engine, EmotionStore(state_db), scope_mode=cfg.scope_mode)
            log.info("kernel.affect_ready", scope_mode=cfg.scope_mode)

            # ── Tools ────────────────────────────────────────────────────────
            dispatcher = ToolDispatcher(
                QueryExecutor(app_db, audit_database=state_db),
                affect,
                timeout_seconds=settings.tools.timeout_seconds,
                max_result_chars=settings.tools.max_result_chars,
            )
            log.info("kernel.tools_ready")

            # ── Orchestrator ─────────────────────────────────────────────────
            orchestrator = Orchestrator.from_settings(
                settings,
                llm_client,
                dispatcher,
                affect,
                chat=chat,
                conversation_log=ConversationLog(state_db),
            )
            log.info("kernel.orchestrator_ready")
        except BaseException:
            await _close_quietly(app_db, state_db)
            raise

        log.info("kernel.build.complete")
        return cls(
            config=cfg,
            state_db=state_db,
            app_db=app_db,
            pool=pool,
            llm_client=llm_client,
            affect=affect,
            dispatcher=dispatcher,
            orchestrator=orchestrator,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def shutdown(self) -> None:
        """Close both databases."""
        log.info("kernel.shutdown.start")
        await _close_quietly(self.app_db, self.state_db)
        log.info("kernel.shutdown.complete")


def _read_app_schema(path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    schema_file = Path(path)
    if not schema_file.exists():
        raise MayBotError(f"database.app_schema_file not found: {schema_file}")
    return schema_file.read_text(encoding="utf-8")


async def _close_quietly(*databases: Database) -> None:
    for db in databases:
        try:
            await db.close()
        except Exception as e:
            log.warning("kernel.shutdown.close_failed", path=db.db_path, error=str(e))

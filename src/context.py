"""Session object built once at startup and passed to every component."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from config.settings import Settings
from src.chains.ans104 import ArweaveSigner
from src.chains.ao import AOClient
from src.chains.evm import BaseChainClient
from src.notify.ledger import CsvTransactionLedger
from src.notify.reporter import EventReporter
from src.notify.slack import SlackNotifier
from src.trading.balances import BalanceOracle
from src.trading.bridge import BaseBridge, BridgeVerifier
from src.trading.orchestrator import TokenSet, TopUpOrchestrator, tokens_from_settings
from src.trading.quotes import KyberSwapQuoteClient, PermaswapQuoteClient
from src.trading.swap import KyberSwapExecutor, PermaswapExecutor, SwapExecutor


@dataclass
class AppContext:
    settings: Settings
    tokens: TokenSet
    ao: AOClient
    oracle: BalanceOracle
    executor: SwapExecutor
    notifier: SlackNotifier
    ledger: CsvTransactionLedger
    reporter: EventReporter
    orchestrator: TopUpOrchestrator
    base: BaseChainClient | None = None
    kyber: KyberSwapQuoteClient | None = None

    @classmethod
    def build(cls, settings: Settings) -> AppContext:
        """Load wallets and create every client. Wallet load errors propagate."""
        tokens = tokens_from_settings(settings)
        signer = ArweaveSigner.from_file(settings.wallet_path)
        ao = AOClient(
            cu_url=settings.ao_cu_url,
            mu_url=settings.ao_mu_url,
            gateway_url=settings.arweave_gateway_url,
            signer=signer,
        )

        base = None
        if settings.base_private_key:
            base = BaseChainClient(
                rpc_url=settings.base_rpc_url,
                private_key=settings.base_private_key,
                receipt_timeout=settings.receipt_timeout_sec,
            )
        oracle = BalanceOracle(ao=ao, base=base)

        kyber = None
        bridge = verifier = None
        if settings.requires_bridge:
            kyber = KyberSwapQuoteClient(
                api_url=settings.kyberswap_api_url, client_id=settings.kyberswap_client_id
            )
            executor: SwapExecutor = KyberSwapExecutor(quotes=kyber, oracle=oracle, base=base)
            bridge = BaseBridge(base=base, oracle=oracle, token=tokens.swap_output)
            verifier = BridgeVerifier(ao=ao, token=tokens.target)
        else:
            pool = PermaswapQuoteClient(
                ao=ao, pool_id=settings.permaswap_pool_id, fee_pct=settings.permaswap_fee_pct
            )
            executor = PermaswapExecutor(
                quotes=pool, oracle=oracle, ao=ao, settlement_wait_sec=settings.settlement_wait_sec
            )

        notifier = SlackNotifier(
            token=settings.slack_token,
            channel=settings.slack_channel,
            enabled=settings.notifications_enabled,
        )
        if not notifier.enabled:
            logger.info("[SLACK] Notifications disabled")

        ledger = CsvTransactionLedger(
            settings.ledger_path, settings.ledger_backup_dir, settings.ledger_retention_days
        )
        ledger.open()
        reporter = EventReporter(notifier=notifier, ledger=ledger)

        orchestrator = TopUpOrchestrator(
            settings=settings,
            tokens=tokens,
            oracle=oracle,
            ao=ao,
            executor=executor,
            reporter=reporter,
            bridge=bridge,
            verifier=verifier,
        )
        return cls(
            settings=settings,
            tokens=tokens,
            ao=ao,
            oracle=oracle,
            executor=executor,
            notifier=notifier,
            ledger=ledger,
            reporter=reporter,
            orchestrator=orchestrator,
            base=base,
            kyber=kyber,
        )

    async def close(self) -> None:
        await self.ao.close()
        await self.notifier.close()
        if self.kyber is not None:
            await self.kyber.close()

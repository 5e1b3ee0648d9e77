# main.py
import asyncio
import sys
from decimal import Decimal
import questionary
from rich.live import Live
from rich.table import Table
from rich.layout import Layout
from rich.console import Console
from rich.panel import Panel

from hyperdrive.config import load_config, get_credentials, parse_networks, dispatch_limits, ConfigError
from hyperdrive.logger import setup_console_logger, AsyncAuditLogger
from hyperdrive.target_store import TargetStore
from hyperdrive.signal_engine import SignalEngine, DEFAULT_SIGNAL_URL
from hyperdrive.endpoint_pool import EndpointPool
from hyperdrive.sequence import SequenceAllocator
from hyperdrive.sizing import SizeGenerator
from hyperdrive.dispatcher import Dispatcher
from hyperdrive.scheduler import SchedulerLoop
from hyperdrive.health import HealthServer

# --- UI HELPER FUNCTIONS ---

def startup_selection(config):
    """Interactive CLI to pick which networks to fire on."""
    print("\n🔥 HYPERDRIVE FLEET COMMAND \n")
    available = list(config['networks'].keys())
    networks = questionary.checkbox("Select Networks to Activate:", choices=available).ask()
    if not networks:
        print("No networks selected. Exiting.")
        sys.exit()
    return networks

def generate_dashboard(store, dispatcher):
    """
    Rich layout: current AI target on top, per-network fire stats below.
    """
    target = store.get()
    header = Panel(
        f"[bold yellow]{target.ticker}[/bold yellow] ({target.confidence * 100:.0f}%) | "
        f"Path: {' -> '.join(target.path)} | Age: {target.age:.1f}s",
        title="🧠 AI Target",
    )

    table = Table(title="🚀 Hyperdrive Networks")
    table.add_column("Network", style="magenta")
    table.add_column("RPCs", justify="right")
    table.add_column("Next Nonce", justify="right", style="cyan")
    table.add_column("Fired", justify="right")
    table.add_column("Sent", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Conflicts", justify="right", style="yellow")
    table.add_column("In-Flight", justify="right")
    table.add_column("Last Error", style="dim")

    for name, rt in dispatcher.networks.items():
        nonce = rt.allocator.next_sequence
        table.add_row(
            name,
            str(len(rt.pool)),
            str(nonce) if nonce is not None else "[red]DOWN[/red]",
            str(rt.stats.fired),
            str(rt.stats.sent),
            str(rt.stats.failed),
            str(rt.stats.conflicts),
            str(len(rt.in_flight)),
            rt.stats.last_error[:40],
        )

    layout = Layout()
    layout.split_column(Layout(header, name="top"), Layout(Panel(table), name="bottom"))
    layout["top"].size = 3
    return layout

# --- MAIN CONTROLLER ---

class HyperDriveBot:
    def __init__(self, config, selected_networks=None):
        self.config = config
        self.profiles = parse_networks(config, selected_networks)
        self.private_key, self.executor = get_credentials(config)

        self.logger = setup_console_logger("HyperDrive", config.get('system', {}).get('log_level', 'INFO'))
        self.audit_log = AsyncAuditLogger(config.get('audit', {}).get('trade_log', 'logs/submissions.csv'))
        self.store = TargetStore()

        sig = config.get('signal', {})
        self.signal = SignalEngine(
            self.store,
            self.logger,
            url=sig.get('url', DEFAULT_SIGNAL_URL),
            interval=sig.get('interval_seconds', 1.5),
            timeout=sig.get('timeout_seconds', 1.5),
            base_asset=sig.get('base_asset', 'ETH'),
        )

        disp = config.get('dispatch', {})
        max_in_flight, max_rate = dispatch_limits(config)
        self.dispatcher = Dispatcher(
            self.store,
            SizeGenerator(),
            self.logger,
            audit_log=self.audit_log,
            gas_limit=disp.get('gas_limit', 500000),
            max_fee_gwei=Decimal(str(disp.get('max_fee_gwei', '300'))),
            max_in_flight=max_in_flight,
        )
        self.max_rate = max_rate
        self.health = HealthServer(config['health']['port'], self.logger)
        self.scheduler = None

    async def initialize(self):
        """Builds every RPC pool and seeds the nonces. Broken networks just stay down."""
        for profile in self.profiles:
            pool = EndpointPool.initialize(profile, self.private_key, self.executor, self.logger)
            allocator = SequenceAllocator(profile.name, self.logger)
            await allocator.bootstrap(pool)
            self.dispatcher.register(profile, pool, allocator)

        active = self.dispatcher.active_networks()
        self.logger.info(f"Active networks: {', '.join(active) if active else 'NONE'}")
        self.scheduler = SchedulerLoop(self.dispatcher, [p.name for p in self.profiles],
                                       self.logger, max_rate=self.max_rate)

    async def _dashboard_loop(self):
        console = Console()
        with Live(console=console, refresh_per_second=4) as live:
            while True:
                live.update(generate_dashboard(self.store, self.dispatcher))
                await asyncio.sleep(0.25)

    async def run(self):
        tasks = []
        try:
            # 1. Health server
            await self.health.start()
            await self.audit_log.start()

            # 2. Brain (AI)
            tasks.append(asyncio.create_task(self.signal.run_loop()))

            # 3. Muscle (trading)
            await self.initialize()
            if self.config.get('system', {}).get('dashboard', True):
                tasks.append(asyncio.create_task(self._dashboard_loop()))
            await self.scheduler.run()
        finally:
            print("Shutting down resources...")
            if self.scheduler:
                self.scheduler.stop()
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.signal.shutdown()
            await self.dispatcher.shutdown()
            await self.audit_log.stop()
            await self.health.shutdown()

if __name__ == "__main__":
    try:
        raw_conf = load_config("config.yaml")
        selected = startup_selection(raw_conf) if raw_conf.get('system', {}).get('select_networks') else None
        bot = HyperDriveBot(raw_conf, selected)
    except ConfigError as e:
        print(f"❌ Config error: {e}")
        sys.exit(1)
    try:
        try:
            import uvloop
            asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
        except ImportError:
            pass
        asyncio.run(bot.run())
    except KeyboardInterrupt:
        print("\n🛑 Bot Stopped by User.")
        sys.exit()

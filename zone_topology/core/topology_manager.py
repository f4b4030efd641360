"""
Topology Manager - Zone topology analysis for the command line

This module loads configuration, runs external resolution for a zone's
record set, assembles the topology graph and renders a summary with rich.
"""

import json
import logging
import sys
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import yaml
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .assembler import GraphAssembler
from .coordinator import ResolutionCoordinator
from .discovery import DiscoveryItem, ServiceDiscovery
from .models import ProgressState, Record, Topology
from ..parsers.csv import RecordCSVParser
from ..resolvers.resolver_client import ResolverClient
from ..utils.validators import ResolverConfig, validate_zone_name

# Initialize rich console and logger
console = Console()
logger = logging.getLogger(__name__)


class TopologyManager:
    """Main topology class that orchestrates resolution and graph assembly."""

    def __init__(self, config_path: str = "configs/config.yaml", offline: bool = False):
        """Initialize the topology manager with configuration."""
        self.config = self._load_config(config_path)
        self._config_logger()
        self.resolver_config = ResolverConfig.from_dict(self.config.get("resolver") or {})
        self.resolver_client = ResolverClient(self.resolver_config, offline=offline)
        self.coordinator = ResolutionCoordinator(
            self.resolver_client.backend, self.resolver_client.fallback
        )
        self.assembler = GraphAssembler()
        self.discovery = ServiceDiscovery(self.resolver_client.backend, direct_probes=not offline)
        self.refresh_counter = 0

    def _load_config(self, config_path: str) -> Dict:
        """Load configuration from YAML file."""
        try:
            with open(config_path, "r") as f:
                config = yaml.safe_load(f) or {}
            logger.info(f"Configuration loaded from {config_path}")
            return config
        except FileNotFoundError:
            logger.warning(f"Config file {config_path} not found, using defaults")
            return self._get_default_config()
        except yaml.YAMLError as e:
            logger.error(f"Error parsing config file: {e}")
            sys.exit(1)

    def _config_logger(self):
        """Configure logging."""
        logging_config = self.config.get("logging", {})
        if logging_config:
            log_level = logging_config.get("level", "INFO")
            log_file = logging_config.get("file", "zone_topology.log")

            logging.basicConfig(
                level=log_level,
                format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                handlers=[
                    logging.FileHandler(log_file),
                    logging.StreamHandler(sys.stdout),
                ],
            )
            return

        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            handlers=[logging.StreamHandler(sys.stdout)],
        )

    def _get_default_config(self) -> Dict:
        """Return default configuration."""
        return {
            "resolver": {
                "resolver_mode": "dns",
                "dns_server": "1.1.1.1",
                "doh_provider": "cloudflare",
                "max_resolution_hops": 15,
                "lookup_timeout_ms": 1200,
            },
            "logging": {"level": "INFO", "file": "zone_topology.log"},
        }

    def analyze(
        self, records: Sequence[Record], zone: str, refresh: bool = False
    ) -> Optional[Topology]:
        """
        Resolve a record set externally and assemble its topology.

        Args:
            records: Zone record set
            zone: Zone name
            refresh: Force a new resolution run, bypassing cached results

        Returns:
            The assembled topology, or None if the run was superseded
        """
        if refresh:
            self.refresh_counter += 1

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total}"),
            console=console,
        ) as progress:
            task = progress.add_task("Resolving hostnames...", total=None)

            def on_progress(state: ProgressState):
                progress.update(task, total=state.total or None, completed=state.done)

            self.coordinator.add_progress_listener(on_progress)
            try:
                resolved = self.coordinator.run(
                    records, zone, self.resolver_config, refresh_counter=self.refresh_counter
                )
            finally:
                self.coordinator.remove_progress_listener(on_progress)

        if resolved is None:
            logger.info("Resolution run was superseded, nothing to assemble")
            return None

        return self.assembler.assemble(
            records, zone, self.resolver_config.max_resolution_hops, resolved
        )

    def process_csv(
        self,
        csv_path: str,
        zone: str,
        refresh: bool = False,
        discover: bool = False,
        output_file: Optional[str] = None,
    ) -> bool:
        """Load a record set from CSV, analyze it and report the topology."""
        try:
            if not validate_zone_name(zone):
                console.print(f"[red]Invalid zone name '{zone}'[/red]")
                return False

            records = RecordCSVParser(csv_path).parse()
            if not records:
                console.print("[red]No valid records found in CSV file[/red]")
                return False

            console.print(
                f"[green]Successfully parsed {len(records)} records from CSV[/green]"
            )

            topology = self.analyze(records, zone, refresh=refresh)
            if topology is None:
                console.print("[yellow]Resolution was superseded, no topology produced[/yellow]")
                return False

            self._display_summary(topology)

            discovery_items: List[DiscoveryItem] = []
            if discover:
                console.print("[green]Running service discovery...[/green]")
                discovery_items = self.discovery.discover(records, zone, self.resolver_config)
                self._display_discovery(discovery_items)

            if output_file:
                self._save_output(topology, discovery_items, zone, output_file)
                console.print(f"[green]Topology saved to: {output_file}[/green]")

            return True

        except Exception as e:
            logger.error(f"Error analyzing zone {zone}: {e}")
            console.print(f"[red]Error: {e}[/red]")
            return False

    def _display_summary(self, topology: Topology):
        """Display the topology summary tables."""
        summary = topology.summary

        table = Table(title="Zone Topology Summary")
        table.add_column("Area", style="cyan")
        table.add_column("Record nodes", style="magenta")
        for area, count in summary.area_counts.items():
            table.add_row(area, str(count))
        console.print(table)

        if summary.cname_chains:
            chains = Table(title="CNAME Chains")
            chains.add_column("Start", style="cyan")
            chains.add_column("Chain", style="white")
            for entry in summary.cname_chains:
                chains.add_row(entry["start"], " -> ".join(entry["chain"]))
            console.print(chains)

        if summary.mx_trails:
            trails = Table(title="MX Trails")
            trails.add_column("From", style="cyan")
            trails.add_column("Priority", style="magenta")
            trails.add_column("Target", style="white")
            trails.add_column("Endpoints", style="green")
            trails.add_column("Source", style="yellow")
            trails.add_column("Reverse", style="blue")
            for trail in summary.mx_trails:
                priority = "?" if trail["priority"] is None else str(trail["priority"])
                endpoints = ", ".join(trail["ipv4"] + trail["ipv6"]) or "-"
                reverse = "; ".join(
                    f"{ip}: {', '.join(names)}" for ip, names in trail["reverse"].items()
                ) or "-"
                trails.add_row(
                    trail["from"], priority, " -> ".join(trail["chain"]), endpoints, trail["source"], reverse
                )
            console.print(trails)

        if summary.shared_ips:
            shared = Table(title="Shared IPs")
            shared.add_column("IP", style="cyan")
            shared.add_column("Names", style="white")
            for cluster in summary.shared_ips:
                shared.add_row(cluster["ip"], ", ".join(cluster["names"]))
            console.print(shared)

        if summary.detected_services:
            services = Table(title="Detected Services")
            services.add_column("Service", style="cyan")
            services.add_column("Via", style="white")
            for entry in summary.detected_services:
                services.add_row(entry["service"], entry["target"])
            console.print(services)

        console.print(
            f"\n[bold]Graph: {len(topology.nodes)} nodes, {len(topology.edges)} edges[/bold]"
        )

    def _display_discovery(self, items: List[DiscoveryItem]):
        """Display service discovery results."""
        if not items:
            console.print("[yellow]No service signals found[/yellow]")
            return

        styles = {"up": "green", "down": "red", "inferred": "yellow"}
        table = Table(title="Service Discovery")
        table.add_column("Service", style="cyan")
        table.add_column("Status")
        table.add_column("Details", style="white")
        for item in items:
            style = styles.get(item.status, "white")
            table.add_row(item.service, f"[{style}]{item.status}[/{style}]", item.details)
        console.print(table)

    def _save_output(
        self, topology: Topology, discovery_items: List[DiscoveryItem], zone: str, output_file: str
    ):
        """Save the topology graph and summary as JSON."""
        document = {
            "zone": zone,
            "generated": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            **topology.to_dict(),
            "resolutions": {
                name: result.to_dict() for name, result in sorted(self.coordinator.results.items())
            },
        }
        if discovery_items:
            document["discovery"] = [item.to_dict() for item in discovery_items]

        try:
            with open(output_file, "w") as f:
                json.dump(document, f, indent=2, default=str)
            logger.info(f"Topology output saved to: {output_file}")
        except OSError as e:
            logger.error(f"Failed to save topology output to {output_file}: {e}")
            console.print(f"[red]Warning: Failed to save topology output to {output_file}: {e}[/red]")

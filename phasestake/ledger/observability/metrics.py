# MIT License
# Copyright (c) 2025 Hashborn

"""
Prometheus Metrics Exporter

Exports ledger metrics in Prometheus format.

Metrics:
- Block height, last settled block, settlement lag
- Settlement passes, duration, rewards credited, phase boundaries crossed
- Committed operations and failures per kind
- Economic metrics (total staked, reward pot, participants)
"""

from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry

# Create registry for metrics
metrics_registry = CollectorRegistry()

# ═══════════════════════════════════════════════════════════════════
# BLOCK METRICS
# ═══════════════════════════════════════════════════════════════════

block_height = Gauge(
    'phasestake_block_height',
    'Current block height reported by the block source',
    registry=metrics_registry
)

last_settled_block = Gauge(
    'phasestake_last_settled_block',
    'Block the ledger was last settled up to',
    registry=metrics_registry
)

settlement_lag_blocks = Gauge(
    'phasestake_settlement_lag_blocks',
    'Blocks elapsed since the last settlement',
    registry=metrics_registry
)

current_phase_index = Gauge(
    'phasestake_current_phase_index',
    'Index of the active reward phase (-1 past the schedule horizon)',
    registry=metrics_registry
)

current_phase_rate = Gauge(
    'phasestake_current_phase_rate',
    'Per-block reward rate of the active phase',
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# SETTLEMENT METRICS
# ═══════════════════════════════════════════════════════════════════

settlements_total = Counter(
    'phasestake_settlements_total',
    'Settlement passes that covered at least one block',
    registry=metrics_registry
)

settlement_duration_seconds = Histogram(
    'phasestake_settlement_duration_seconds',
    'Wall time spent in one settlement pass',
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1, 5],
    registry=metrics_registry
)

settlement_blocks = Histogram(
    'phasestake_settlement_blocks',
    'Blocks covered by one settlement pass',
    buckets=[1, 5, 10, 50, 100, 1000, 10000],
    registry=metrics_registry
)

rewards_credited_total = Counter(
    'phasestake_rewards_credited_total',
    'Total rewards credited to participants (base units)',
    registry=metrics_registry
)

phase_boundaries_crossed_total = Counter(
    'phasestake_phase_boundaries_crossed_total',
    'Settlement passes whose interval spanned more than one phase',
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# OPERATION METRICS
# ═══════════════════════════════════════════════════════════════════

operations_total = Counter(
    'phasestake_operations_total',
    'Committed ledger operations',
    ['op'],
    registry=metrics_registry
)

operation_failures_total = Counter(
    'phasestake_operation_failures_total',
    'Rejected or rolled back ledger operations',
    ['op', 'code'],
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# ECONOMIC METRICS
# ═══════════════════════════════════════════════════════════════════

total_staked = Gauge(
    'phasestake_total_staked',
    'Sum of all participant balances (principal + credited rewards)',
    registry=metrics_registry
)

reward_pot_remaining = Gauge(
    'phasestake_reward_pot_remaining',
    'Remaining payable liability ceiling',
    registry=metrics_registry
)

participants_total = Gauge(
    'phasestake_participants_total',
    'Number of registered participants',
    registry=metrics_registry
)


# ═══════════════════════════════════════════════════════════════════
# HELPER FUNCTIONS
# ═══════════════════════════════════════════════════════════════════

def record_settlement(report, duration_sec: float):
    """
    Update settlement counters/histograms.
    Should only be called for passes that covered at least one block.

    Args:
        report: SettlementReport of the committed pass
        duration_sec: time spent computing the pass
    """
    if report.noop:
        return
    settlements_total.inc()
    settlement_duration_seconds.observe(duration_sec)
    settlement_blocks.observe(report.blocks)
    if report.total_rewarded:
        rewards_credited_total.inc(report.total_rewarded)
    if report.boundary_crossed:
        phase_boundaries_crossed_total.inc()


def record_operation(op: str):
    operations_total.labels(op=op).inc()


def record_failure(op: str, code: str):
    operation_failures_total.labels(op=op, code=code).inc()


def update_metrics(ledger):
    """
    Update all gauges from ledger state.
    Called after every commit AND when metrics are scraped.

    Args:
        ledger: Ledger instance
    """
    status = ledger.status()

    block_height.set(status["block_height"])
    last_settled_block.set(status["last_settled_block"])
    settlement_lag_blocks.set(max(0, status["block_height"] - status["last_settled_block"]))

    phase = status["current_phase"]
    current_phase_index.set(phase["index"])
    current_phase_rate.set(phase["rate"])

    total_staked.set(status["total_staked"])
    reward_pot_remaining.set(status["reward_pot_remaining"])
    participants_total.set(status["participants"])

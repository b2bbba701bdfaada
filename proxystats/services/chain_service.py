"""Proxy chain helpers: short label expansion and per-entity breakdowns"""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, desc, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from proxystats.models.traffic import RuleProxyStats
from proxystats.services.dimensions import BREAKDOWNS, CHAIN_SEPARATOR, first_hop, terminal_hop
from proxystats.services.rollup_router import CUMULATIVE, RollupRouter, format_seen

LIKE_ESCAPE = "\\"


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so ``value`` only matches itself"""
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", f"{LIKE_ESCAPE}%")
        .replace("_", f"{LIKE_ESCAPE}_")
    )


def chain_filter(column, chain: str):
    """``chain`` itself or any longer chain that starts with it"""
    return or_(
        column == chain,
        column.like(f"{escape_like(chain)}{CHAIN_SEPARATOR}%", escape=LIKE_ESCAPE)
    )


def expand_chain_labels(labels: Iterable[str], full_chains: Iterable[str]) -> List[str]:
    """
    Resolve short chain labels against the full chains seen for a rule.

    A label matches a full chain equal to it or ending in it. Labels with
    no recorded full chain are returned unchanged. The result is
    de-duplicated and sorted.
    """
    chains = [c for c in full_chains if c]
    expanded = set()
    for label in labels:
        if not label:
            continue
        matches = [c for c in chains if c == label or terminal_hop(c) == label]
        if matches:
            expanded.update(matches)
        else:
            expanded.add(label)
    return sorted(expanded)


def aggregate_by_first_hop(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Merge proxy rows whose chains share a first hop.

    Each merged row is keyed by the first hop and lists the full chains
    folded into it.
    """
    merged: Dict[str, Dict[str, Any]] = {}
    for item in items:
        hop = first_hop(item["chain"])
        target = merged.get(hop)
        if target is None:
            merged[hop] = {
                "chain": hop,
                "total_upload": item["total_upload"],
                "total_download": item["total_download"],
                "total_connections": item["total_connections"],
                "last_seen": item["last_seen"],
                "chains": [item["chain"]],
            }
            continue
        target["total_upload"] += item["total_upload"]
        target["total_download"] += item["total_download"]
        target["total_connections"] += item["total_connections"]
        if item["last_seen"] and (target["last_seen"] is None or item["last_seen"] > target["last_seen"]):
            target["last_seen"] = item["last_seen"]
        target["chains"].append(item["chain"])

    for target in merged.values():
        target["chains"].sort()
    return sorted(
        merged.values(),
        key=lambda i: (-(i["total_upload"] + i["total_download"]), i["chain"])
    )


class ChainService:
    """Service for proxy rankings, rule/chain lookups and breakdowns"""

    @staticmethod
    async def get_rule_chains(db: AsyncSession, backend_id: int, rule: str) -> List[str]:
        """All full chains recorded for a rule"""
        result = await db.execute(
            select(RuleProxyStats.chain).where(
                RuleProxyStats.backend_id == backend_id,
                RuleProxyStats.rule == rule
            ).order_by(RuleProxyStats.chain)
        )
        return [row[0] for row in result.all()]

    @staticmethod
    async def expand_short_chains(
        db: AsyncSession,
        backend_id: int,
        rule: str,
        labels: Iterable[str]
    ) -> List[str]:
        full_chains = await ChainService.get_rule_chains(db, backend_id, rule)
        return expand_chain_labels(labels, full_chains)

    @staticmethod
    async def attach_rule_chains(
        db: AsyncSession,
        backend_id: int,
        items: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        """Add the expanded ``chains`` of each rule row's ``final_proxy``"""
        for item in items:
            labels = [item.get("final_proxy") or ""]
            item["chains"] = await ChainService.expand_short_chains(
                db, backend_id, item["rule"], labels
            )
        return items

    @staticmethod
    async def get_proxy_stats(
        db: AsyncSession,
        backend_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50
    ) -> Dict[str, Any]:
        """Proxy ranking rolled up by the first hop of each chain"""
        result = await RollupRouter.top(db, backend_id, "proxy", start, end, limit=None)
        result["items"] = aggregate_by_first_hop(result["items"])[:limit]
        return result

    @staticmethod
    async def get_breakdown(
        db: AsyncSession,
        backend_id: int,
        breakdown: str,
        parent: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50
    ) -> Dict[str, Any]:
        """
        Children of one entity (e.g. domains of a device) by traffic.

        Without a window the cumulative pairwise table answers; a window is
        routed like any ranking and read from the minute or hourly fact
        table. Proxy breakdowns also match longer chains that start with
        ``parent``. Windowed device breakdowns carry the ``rules`` and
        expanded ``chains`` behind each child.
        """
        descriptor = BREAKDOWNS[breakdown]
        resolution = RollupRouter.resolve(start, end)
        windowed = resolution.name != CUMULATIVE
        model = resolution.fact_table if windowed else descriptor.model

        parent_col = getattr(model, descriptor.parent_column)
        child_col = getattr(model, descriptor.child_column)
        if descriptor.parent_column == "chain":
            parent_filter = chain_filter(parent_col, parent)
        else:
            parent_filter = parent_col == parent

        filters = [model.backend_id == backend_id, parent_filter, child_col != ""]
        if windowed:
            time_col = getattr(model, resolution.time_column)
            filters += [time_col >= resolution.start_key, time_col <= resolution.end_key]
            last_seen = func.max(time_col)
        else:
            last_seen = func.max(model.last_seen)

        # Prefix matches can yield one child under several chains; group them
        upload = func.sum(model.total_upload)
        download = func.sum(model.total_download)
        result = await db.execute(
            select(
                child_col.label("key"),
                upload.label("total_upload"),
                download.label("total_download"),
                func.sum(model.total_connections).label("total_connections"),
                last_seen.label("last_seen")
            ).where(
                *filters
            ).group_by(
                child_col
            ).order_by(
                desc(upload + download),
                child_col
            ).limit(limit)
        )

        items = [
            {
                descriptor.child_column: row.key,
                "total_upload": int(row.total_upload or 0),
                "total_download": int(row.total_download or 0),
                "total_connections": int(row.total_connections or 0),
                "last_seen": format_seen(row.last_seen),
            }
            for row in result.all()
        ]

        if descriptor.parent_column == "source_ip":
            if windowed:
                await ChainService._attach_routing(
                    db, backend_id, model, descriptor.child_column, filters, items
                )
            else:
                for item in items:
                    item["rules"] = []
                    item["chains"] = []

        return {"resolution": resolution.name, "items": items}

    @staticmethod
    async def _attach_routing(db: AsyncSession, backend_id: int, model, child: str, filters, items) -> None:
        """Add the distinct rules and expanded chains behind each windowed child row"""
        if not items:
            return
        child_col = getattr(model, child)
        keys = [item[child] for item in items]
        result = await db.execute(
            select(child_col.label("key"), model.rule, model.chain).where(
                *filters,
                child_col.in_(keys)
            ).distinct()
        )

        routing: Dict[str, Dict[str, set]] = {key: {"rules": set(), "chains": set()} for key in keys}
        for row in result.all():
            if row.rule:
                routing[row.key]["rules"].add(row.rule)
            if row.chain:
                routing[row.key]["chains"].add(row.chain)

        rule_chains: Dict[str, List[str]] = {}
        for item in items:
            entry = routing[item[child]]
            rules = sorted(entry["rules"])
            full_chains: List[str] = []
            for rule in rules:
                if rule not in rule_chains:
                    rule_chains[rule] = await ChainService.get_rule_chains(db, backend_id, rule)
                full_chains.extend(rule_chains[rule])
            item["rules"] = rules
            item["chains"] = expand_chain_labels(entry["chains"], full_chains)

"""
Duplicate reconciler (données de référence : produits, catégories, fournisseurs).

Algorithme :
    1) multimap clé -> records, dans l'ordre d'entrée (clé vide = ignoré)
    2) pour chaque groupe >= 2 : tri stable selon la stratégie, on garde l'index 0
    3) les autres sont retirés (un delete par record)

Plusieurs clés = passes successives sur les survivants de la passe précédente.
Un gagnant retiré par une passe suivante : son groupe est fusionné dans le nouveau.
Un échec de suppression n'arrête jamais le lot : il est collecté.
Un record déjà absent compte comme résolu.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Sequence

from sqlalchemy.exc import SQLAlchemyError

from ocha.app.db.store import RecordStore
from ocha.app.settings import settings
from ocha.services.errors import OchaError, PartialFailure, ValidationError

logger = logging.getLogger(__name__)

Record = dict[str, Any]
KeyFn = Callable[[Record], "str | None"]


def normalize_name(value: Any) -> str:
    """'  Sushi   SALMON ' -> 'sushi salmon'"""
    if value is None:
        return ""
    return " ".join(str(value).split()).lower()


# ---------- clés ----------
def key_name(rec: Record) -> str | None:
    return normalize_name(rec.get("name")) or None


def key_code(rec: Record) -> str | None:
    return normalize_name(rec.get("code")) or None


def key_name_category(rec: Record) -> str | None:
    name = normalize_name(rec.get("name"))
    category_id = rec.get("category_id")
    if not name or category_id is None:
        return None
    return f"{name}_{category_id}"


def key_name_parent(rec: Record) -> str | None:
    name = normalize_name(rec.get("name"))
    if not name:
        return None
    return f"{name}_{rec.get('parent_id') or 0}"


KEYS: dict[str, KeyFn] = {
    "name": key_name,
    "code": key_code,
    "name_category": key_name_category,
    "name_parent": key_name_parent,
}

DEFAULT_KEYS = {
    "products": ["name"],
    "categories": ["name_parent"],
    "suppliers": ["name"],
}


# ---------- stratégies ----------
def _created(rec: Record):
    value = rec.get("created_at")
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            # date illisible = date absente
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _price(rec: Record) -> Decimal:
    value = rec.get("list_price", rec.get("price"))
    try:
        return Decimal(str(value)) if value is not None else Decimal(0)
    except InvalidOperation:
        return Decimal(0)


def _by_created(newest: bool):
    def sort(bucket: Sequence[Record]) -> list[Record]:
        # dates absentes toujours en dernier
        dated = [r for r in bucket if _created(r) is not None]
        undated = [r for r in bucket if _created(r) is None]
        return sorted(dated, key=_created, reverse=newest) + undated

    return sort


def _by_price(highest: bool):
    def sort(bucket: Sequence[Record]) -> list[Record]:
        return sorted(bucket, key=_price, reverse=highest)

    return sort


STRATEGIES: dict[str, Callable[[Sequence[Record]], list[Record]]] = {
    "newest": _by_created(newest=True),
    "oldest": _by_created(newest=False),
    "highest_price": _by_price(highest=True),
    "lowest_price": _by_price(highest=False),
}


@dataclass
class DuplicateGroup:
    key_name: str
    key: str
    kept: Record
    retired: list[Record]

    @property
    def size(self) -> int:
        return 1 + len(self.retired)


@dataclass
class ReconcileResult:
    collection: str | None
    strategy: str
    keys: list[str]
    groups: list[DuplicateGroup] = field(default_factory=list)
    survivors: list[Record] = field(default_factory=list)
    failures: list[dict] = field(default_factory=list)
    vanished: list[Any] = field(default_factory=list)
    dry_run: bool = False

    @property
    def kept(self) -> list[Record]:
        # un même record peut gagner sur plusieurs clés
        seen, kept = set(), []
        for g in self.groups:
            if id(g.kept) not in seen:
                seen.add(id(g.kept))
                kept.append(g.kept)
        return kept

    @property
    def retired(self) -> list[Record]:
        return [r for g in self.groups for r in g.retired]

    @property
    def retired_ok(self) -> list[Any]:
        failed = {f["id"] for f in self.failures}
        return [r["id"] for r in self.retired if r.get("id") not in failed]

    def summary(self) -> dict:
        return {
            "collection": self.collection,
            "strategy": self.strategy,
            "keys": self.keys,
            "dry_run": self.dry_run,
            "groups": len(self.groups),
            "retired": len(self.retired) - len(self.failures),
            "kept_ids": [r.get("id") for r in self.kept],
            "retired_ids": self.retired_ok,
            "vanished": len(self.vanished),
            "failures": list(self.failures),
        }

    def raise_for_failures(self) -> None:
        if self.failures:
            raise PartialFailure(
                f"{len(self.failures)} record(s) could not be retired",
                self.failures,
                groups=len(self.groups),
                retired=len(self.retired) - len(self.failures),
            )


def resolve_strategy(strategy: str | None) -> str:
    name = strategy or settings.RECONCILE_DEFAULT_STRATEGY
    if name not in STRATEGIES:
        raise ValidationError(f"Unknown strategy '{name}'", field="strategy", allowed=sorted(STRATEGIES))
    return name


def resolve_keys(keys: Iterable[str] | str | None, collection: str | None = None) -> list[str]:
    if isinstance(keys, str):
        keys = [k.strip() for k in keys.split(",") if k.strip()]
    names = list(keys or DEFAULT_KEYS.get(collection or "", []))
    if not names:
        raise ValidationError("At least one key is required", field="key", allowed=sorted(KEYS))
    for name in names:
        if name not in KEYS:
            raise ValidationError(f"Unknown key '{name}'", field="key", allowed=sorted(KEYS))
    return names


def find_duplicates(records: Iterable[Record], key: str, strategy: str = "newest") -> list[DuplicateGroup]:
    """Une passe : groupes de doublons pour UNE clé (fonction pure)."""
    key_fn = KEYS[key]
    sort = STRATEGIES[resolve_strategy(strategy)]

    buckets: dict[str, list[Record]] = {}
    for rec in records:
        k = key_fn(rec)
        if not k:
            continue
        buckets.setdefault(k, []).append(rec)

    groups = []
    for k, bucket in buckets.items():
        if len(bucket) < 2:
            continue
        ordered = sort(bucket)
        groups.append(DuplicateGroup(key_name=key, key=k, kept=ordered[0], retired=ordered[1:]))
    return groups


def plan(
    records: Iterable[Record],
    keys: Iterable[str] | str,
    strategy: str | None = None,
    *,
    collection: str | None = None,
) -> ReconcileResult:
    """Calcule kept / retired sans rien supprimer."""
    strategy = resolve_strategy(strategy)
    key_names = resolve_keys(keys, collection)
    result = ReconcileResult(collection=collection, strategy=strategy, keys=key_names, dry_run=True)

    survivors = list(records)
    # id(record gardé) -> groupes des passes précédentes qui l'ont gardé
    kept_by: dict[int, list[DuplicateGroup]] = {}
    for key in key_names:
        groups = find_duplicates(survivors, key, strategy)
        retired_ids = {id(r) for g in groups for r in g.retired}
        survivors = [r for r in survivors if id(r) not in retired_ids]
        for group in groups:
            # un gagnant d'une passe précédente retiré ici : son groupe est absorbé
            absorbed = []
            for rec in group.retired:
                for earlier in kept_by.pop(id(rec), []):
                    absorbed.extend(earlier.retired)
                    result.groups = [g for g in result.groups if g is not earlier]
            group.retired.extend(absorbed)
            kept_by.setdefault(id(group.kept), []).append(group)
            result.groups.append(group)
    result.survivors = survivors
    return result


def reconcile(
    store: RecordStore,
    *,
    keys: Iterable[str] | str | None = None,
    strategy: str | None = None,
    dry_run: bool = False,
) -> ReconcileResult:
    records = store.select()
    result = plan(records, resolve_keys(keys, store.collection), strategy, collection=store.collection)
    result.dry_run = dry_run

    logger.info(
        "reconcile %s keys=%s strategy=%s: %s group(s), %s record(s) to retire%s",
        store.collection,
        ",".join(result.keys),
        result.strategy,
        len(result.groups),
        len(result.retired),
        " (dry run)" if dry_run else "",
    )
    if dry_run:
        return result

    for group in result.groups:
        for rec in group.retired:
            rec_id = rec.get("id")
            try:
                deleted = store.delete(rec_id)
            except (OchaError, SQLAlchemyError) as exc:
                logger.error("could not retire %s %s (%s): %s", store.collection, rec_id, group.key, exc)
                result.failures.append({"id": rec_id, "error": str(exc)})
                continue
            if not deleted:
                # déjà supprimé entre-temps : résolu
                result.vanished.append(rec_id)
            logger.info("retired %s %s (duplicate of %s on %s)", store.collection, rec_id, group.kept.get("id"), group.key)

    if result.failures:
        logger.warning("reconcile %s finished with %s failure(s)", store.collection, len(result.failures))
    return result

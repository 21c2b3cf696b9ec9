"""Feature Policy - per-feed AI feature toggles with group inheritance.

Each AI feature (title translation, full-text translation, summary) has its
own override map ``{"feeds": {id: "on"|"off"}, "groups": {id: "on"|"off"}}``.
A feed resolves to its own override, then its group's, then off. Setting a
value to ``inherit`` removes the stored entry.
"""

import copy
import logging
from typing import Callable, Iterable, Mapping, Optional, Union

from feedai.schemas.ai_config import AIConfig
from feedai.schemas.translation import Feature, OverrideEntry, OverrideScope, OverrideValue
from feedai.services.preference_store import PreferenceStore, get_preference_store

logger = logging.getLogger(__name__)

OverrideMap = dict[str, dict[str, str]]
GroupLookup = Callable[[str], Optional[Union[str, int]]]

PREFERENCE_KEYS = {
    Feature.TITLE_TRANSLATION: "title_translation_overrides",
    Feature.FULL_TRANSLATION: "auto_translate_overrides",
    Feature.SUMMARY: "auto_summary_overrides",
}

_SCOPE_FIELDS = {
    OverrideScope.FEED: "feeds",
    OverrideScope.GROUP: "groups",
}


def empty_overrides() -> OverrideMap:
    return {"feeds": {}, "groups": {}}


def _normalize(raw) -> OverrideMap:
    overrides = empty_overrides()
    if not isinstance(raw, dict):
        return overrides
    for field in ("feeds", "groups"):
        entries = raw.get(field)
        if not isinstance(entries, dict):
            continue
        for unit_id, value in entries.items():
            if value in (OverrideValue.ON.value, OverrideValue.OFF.value):
                overrides[field][str(unit_id)] = value
    return overrides


def _apply(overrides: OverrideMap, scope: OverrideScope, unit_id: str, value: OverrideValue) -> None:
    entries = overrides[_SCOPE_FIELDS[OverrideScope(scope)]]
    if OverrideValue(value) == OverrideValue.INHERIT:
        entries.pop(unit_id, None)
    else:
        entries[unit_id] = OverrideValue(value).value


class FeaturePolicyResolver:
    """Decide whether a feed qualifies for an AI feature.

    Args:
        store: Where override maps are persisted.
        group_of: Returns the group id of a feed, or None for ungrouped feeds.
        is_configured: When this returns False no feature applies.
        on_change: Called after overrides are saved, e.g. to restart
            background pretranslation.
    """

    def __init__(
        self,
        store: Optional[PreferenceStore] = None,
        group_of: Optional[GroupLookup] = None,
        is_configured: Optional[Callable[[], bool]] = None,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self.store = store if store is not None else get_preference_store()
        self.group_of = group_of or (lambda unit_id: None)
        self.is_configured = is_configured or (lambda: AIConfig.from_settings().is_configured)
        self.on_change = on_change
        self._overrides: dict[Feature, OverrideMap] = {feature: empty_overrides() for feature in Feature}

    async def load(self) -> None:
        """Read all override maps from the preference store."""
        try:
            stored = await self.store.get_many(list(PREFERENCE_KEYS.values()))
        except Exception as e:
            logger.warning(f"Failed to load feature overrides, using defaults: {e}")
            stored = {}
        for feature, key in PREFERENCE_KEYS.items():
            self._overrides[feature] = _normalize(stored.get(key))

    def overrides(self, feature: Feature) -> OverrideMap:
        return copy.deepcopy(self._overrides[Feature(feature)])

    def get_override(self, scope: OverrideScope, unit_id, feature: Feature) -> OverrideValue:
        field = _SCOPE_FIELDS[OverrideScope(scope)]
        value = self._overrides[Feature(feature)][field].get(str(unit_id))
        return OverrideValue(value) if value else OverrideValue.INHERIT

    def should_apply(self, unit_id, feature: Feature) -> bool:
        # Feed setting > group setting > off
        if not self.is_configured():
            return False

        feed_value = self.get_override(OverrideScope.FEED, unit_id, feature)
        if feed_value != OverrideValue.INHERIT:
            return feed_value == OverrideValue.ON

        group_id = self.group_of(str(unit_id))
        if group_id is not None and group_id != "":
            group_value = self.get_override(OverrideScope.GROUP, group_id, feature)
            if group_value != OverrideValue.INHERIT:
                return group_value == OverrideValue.ON

        return False

    def enabled_units(self, feature: Feature, unit_ids: Iterable) -> set[str]:
        """The subset of ``unit_ids`` that qualifies for ``feature``."""
        return {str(unit_id) for unit_id in unit_ids if self.should_apply(unit_id, feature)}

    async def set_override(
        self,
        scope: OverrideScope,
        unit_id,
        feature: Feature,
        value: OverrideValue,
    ) -> None:
        await self.set_batch_overrides(feature, [OverrideEntry(scope=scope, id=unit_id, value=value)])

    async def set_batch_overrides(
        self,
        feature: Feature,
        entries: Iterable[Union[OverrideEntry, Mapping]],
    ) -> None:
        """Apply every entry, then persist the feature's map with one write."""
        feature = Feature(feature)
        updated = copy.deepcopy(self._overrides[feature])
        count = 0
        for entry in entries:
            if not isinstance(entry, OverrideEntry):
                entry = OverrideEntry.model_validate(entry)
            _apply(updated, entry.scope, entry.id, entry.value)
            count += 1

        self._overrides[feature] = updated
        try:
            await self.store.set_many({PREFERENCE_KEYS[feature]: updated})
        except Exception as e:
            logger.error(f"Failed to save {feature.value} overrides: {e}")
            return
        logger.debug(f"Saved {count} {feature.value} overrides")
        if self.on_change is not None:
            self.on_change()

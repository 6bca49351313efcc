from __future__ import annotations

import asyncio

import httpx

from m365_license_tools.licensing.direct import DirectAssignmentCollector, classify_user
from m365_license_tools.safety.guardian import MODE_READ_ONLY

from conftest import E3_ID, E5_ID

GROUP_ID = "9d7f7a2e-6a4c-4b8e-9a0b-1f2a3b4c5d6e"


def _user(uid, name, upn, states, enabled=True):
    return {
        "id": uid,
        "displayName": name,
        "userPrincipalName": upn,
        "accountEnabled": enabled,
        "licenseAssignmentStates": states,
    }


ALICE = _user("u1", "Alice", "alice@contoso.com", [
    {"skuId": E5_ID.upper(), "assignedByGroup": None, "state": "Active"},
    {"skuId": E5_ID, "assignedByGroup": GROUP_ID, "state": "Active"},
    {"skuId": E3_ID, "assignedByGroup": None, "state": "Active"},
])
BOB = _user("u2", "Bob", "bob@contoso.com", [
    {"skuId": E5_ID, "assignedByGroup": GROUP_ID, "state": "Active"},
])
CAROL = _user("u3", "carol", "carol@contoso.com", [
    {"skuId": E5_ID, "assignedByGroup": None, "state": "Error"},
], enabled=False)
DAVE = _user("u4", "Dave", "dave@contoso.com", [])


def test_direct_hold_is_reported_once_even_with_group_copy(catalog):
    e5 = catalog.resolve("SPE_E5")

    [record] = classify_user(ALICE, e5)

    assert record.assigned_directly
    assert record.assigned_by_group == ""
    assert record.sku_id == E5_ID
    assert record.sku_part_number == "SPE_E5"
    assert record.user_principal_name == "alice@contoso.com"


def test_group_only_hold_is_excluded_unless_requested(catalog):
    e5 = catalog.resolve("SPE_E5")

    assert classify_user(BOB, e5) == []
    [inherited] = classify_user(BOB, e5, include_inherited=True)
    assert not inherited.assigned_directly
    assert inherited.assigned_by_group == GROUP_ID


def test_include_inherited_lists_both_sources(catalog):
    records = classify_user(ALICE, catalog.resolve("SPE_E5"), include_inherited=True)

    assert [r.assigned_directly for r in records] == [True, False]


def test_user_without_license_states_yields_nothing(catalog):
    assert classify_user({"id": "u9"}, catalog.resolve("SPE_E5")) == []


def _collect(make_client, catalog, **kwargs):
    pages = iter([
        {"value": [DAVE, BOB, CAROL], "@odata.nextLink": "https://graph.microsoft.com/v1.0/users?$skiptoken=p2"},
        {"value": [ALICE]},
    ])
    selects = []

    def handler(request):
        selects.append(request.url.params.get("$select"))
        return httpx.Response(200, json=next(pages))

    async def scenario():
        async with make_client(handler, mode=MODE_READ_ONLY) as client:
            collector = DirectAssignmentCollector(client, catalog.resolve("SPE_E5"), **kwargs)
            return await collector.collect(), collector, selects

    return asyncio.run(scenario())


def test_collector_scans_all_pages_and_sorts_by_name(make_client, catalog):
    records, collector, selects = _collect(make_client, catalog)

    assert collector.users_scanned == 4
    assert [r.display_name for r in records] == ["Alice", "carol"]
    assert "licenseAssignmentStates" in selects[0]


def test_collector_can_skip_disabled_accounts(make_client, catalog):
    records, _, _ = _collect(make_client, catalog, exclude_disabled=True, include_inherited=True)

    assert [(r.display_name, r.assigned_directly) for r in records] == [
        ("Alice", True),
        ("Alice", False),
        ("Bob", False),
    ]

import httpx
import pytest

from arena.errors import ExternalLookupFailed
from arena.services.leaderboard import HttpLeaderboardSnapshot, normalize_entries, index_by_key


def test_normalize_tolerates_field_variants():
    rows = normalize_entries([
        {"User": "Zed", "Rank": "2", "Score": 1500, "FormattedScore": "1,500"},
        {"username": "amy", "apiRank": 1, "value": "2000"},
        {"user": "", "rank": 3},
        {},
        {"user": "bad", "rank": "n/a", "score": "x"},
    ])
    assert [(e.participant_key, e.rank) for e in rows] == [("bad", 0), ("amy", 1), ("Zed", 2)]
    assert rows[1].score == 2000.0
    assert rows[2].formatted_score == "1,500"
    assert normalize_entries(None) == []


def test_index_prefers_best_positive_rank():
    rows = normalize_entries([{"User": "amy", "Rank": 0}, {"User": "AMY", "Rank": 4}, {"User": "amy", "Rank": 2}])
    assert index_by_key(rows)["amy"].rank == 2


@pytest.mark.asyncio
async def test_http_snapshot_reads_results():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"Count": 2, "Total": 2, "Results": [
            {"User": "bob", "Rank": 2, "Score": 10, "FormattedScore": "10"},
            {"User": "alice", "Rank": 1, "Score": 12, "FormattedScore": "12"},
        ]})

    snap = HttpLeaderboardSnapshot(
        base_url="https://lb.test/API", api_user="ops", api_key="k", fetch_count=50,
        transport=httpx.MockTransport(handler),
    )
    entries = await snap.get_entries("1234")
    assert [e.participant_key for e in entries] == ["alice", "bob"]
    assert seen["path"] == "/API/API_GetLeaderboardEntries.php"
    assert seen["params"] == {"i": "1234", "n": "50", "z": "ops", "y": "k"}


@pytest.mark.asyncio
async def test_http_snapshot_failures_become_lookup_errors():
    def server_error(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="maintenance")

    def garbage(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"Results": "nope"})

    for handler in (server_error, garbage):
        snap = HttpLeaderboardSnapshot(base_url="https://lb.test/API", api_user="", api_key="",
                                       transport=httpx.MockTransport(handler))
        with pytest.raises(ExternalLookupFailed):
            await snap.get_entries("1")

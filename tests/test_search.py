import asyncio
import pytest
from clinicnexus_adapter.search import EntitySearch, display_value

JOHN = {"patientID": 1, "name": "John Carter"}
JOAN = {"patientID": 2, "name": "Joan Watson"}


class Recorder:
    def __init__(self, results=None, delays=None):
        self.queries = []
        self.fired_at = []
        self.results = results or {}
        self.delays = delays or {}

    async def __call__(self, query):
        loop = asyncio.get_running_loop()
        self.queries.append(query)
        self.fired_at.append(loop.time())
        await asyncio.sleep(self.delays.get(query, 0))
        return self.results.get(query, [])


@pytest.mark.asyncio
async def test_rapid_typing_collapses_into_one_lookup():
    lookup = Recorder(results={"John": [JOHN]})
    engine = EntitySearch(lookup, "name", debounce=0.3)

    loop = asyncio.get_running_loop()
    for text in ("Jo", "Joh", "John"):
        engine.set_text(text)
        last_keystroke = loop.time()
        await asyncio.sleep(0.03)
    await engine.wait_idle()

    assert lookup.queries == ["John"]
    assert lookup.fired_at[0] - last_keystroke >= 0.28
    assert engine.visible_suggestions == [JOHN]


@pytest.mark.asyncio
async def test_short_query_never_looks_up_and_clears_suggestions():
    lookup = Recorder(results={"Jo": [JOHN, JOAN]})
    engine = EntitySearch(lookup, "name", debounce=0.01)
    engine.set_text("Jo")
    await engine.wait_idle()
    assert engine.suggestions == [JOHN, JOAN]

    engine.set_text("J")
    assert engine.suggestions == []
    await asyncio.sleep(0.05)
    await engine.wait_idle()
    assert lookup.queries == ["Jo"]

    engine.set_text("")
    await asyncio.sleep(0.05)
    assert lookup.queries == ["Jo"]
    assert engine.visible_suggestions == []


@pytest.mark.asyncio
async def test_late_response_does_not_overwrite_fresher_results():
    lookup = Recorder(results={"Jo": [JOHN, JOAN], "Joa": [JOAN]}, delays={"Jo": 0.15})
    engine = EntitySearch(lookup, "name", debounce=0.01)

    engine.set_text("Jo")
    await asyncio.sleep(0.05)  # "Jo" is on the wire now
    engine.set_text("Joa")
    await engine.wait_idle()

    # the superseded request still ran to completion
    assert lookup.queries == ["Jo", "Joa"]
    assert engine.suggestions == [JOAN]
    assert engine.loading is False


@pytest.mark.asyncio
async def test_loading_is_visible_state_while_open():
    lookup = Recorder(results={"Jo": [JOHN]}, delays={"Jo": 0.05})
    engine = EntitySearch(lookup, "name", debounce=0.01)

    engine.set_text("Jo")
    await asyncio.sleep(0.03)
    assert engine.is_open and engine.loading
    assert engine.visible_suggestions == []

    await engine.wait_idle()
    assert not engine.loading
    assert engine.visible_suggestions == [JOHN]


@pytest.mark.asyncio
async def test_failed_lookup_reads_as_no_results():
    async def broken(query):
        raise RuntimeError("search endpoint down")

    engine = EntitySearch(broken, "name", debounce=0.01)
    engine.suggestions = [JOHN]
    engine.set_text("John")
    await engine.wait_idle()

    assert engine.suggestions == []
    assert engine.loading is False


@pytest.mark.asyncio
async def test_malformed_lookup_functions_are_contained():
    def sync_raises(query):
        raise KeyError(query)

    for search in (sync_raises, lambda q: None, lambda q: 42):
        engine = EntitySearch(search, "name", debounce=0.01)
        engine.set_text("John")
        await engine.wait_idle()
        assert engine.suggestions == []


@pytest.mark.asyncio
async def test_sync_lookup_is_accepted():
    engine = EntitySearch(lambda q: [JOHN], "name", debounce=0.01)
    engine.set_text("Jo")
    await engine.wait_idle()
    assert engine.suggestions == [JOHN]


@pytest.mark.asyncio
async def test_select_fills_text_and_closes():
    texts, picked = [], []
    engine = EntitySearch(Recorder(), "name", texts.append, picked.append, debounce=0.01)
    engine.focus()

    engine.select(JOHN)
    assert picked == [JOHN]
    assert texts[-1] == "John Carter"
    assert engine.text == "John Carter"
    assert engine.selected == JOHN
    assert not engine.is_open

    before = (engine.text, engine.selected, engine.is_open)
    engine.select(JOHN)
    assert (engine.text, engine.selected, engine.is_open) == before


@pytest.mark.asyncio
async def test_select_discards_pending_lookup():
    lookup = Recorder(results={"Jo": [JOHN, JOAN]})
    engine = EntitySearch(lookup, "name", debounce=0.05)
    engine.set_text("Jo")
    engine.select(JOAN)
    await asyncio.sleep(0.1)
    await engine.wait_idle()
    assert lookup.queries == []
    assert engine.text == "Joan Watson"


@pytest.mark.asyncio
async def test_clear_resets_selection():
    texts, picked = [], []
    engine = EntitySearch(Recorder(), "name", texts.append, picked.append, debounce=0.01)
    engine.select(JOHN)
    engine.focus()

    engine.clear()
    assert picked == [JOHN, None]
    assert texts[-1] == ""
    assert engine.selected is None
    assert not engine.is_open


@pytest.mark.asyncio
async def test_open_close_transitions():
    engine = EntitySearch(Recorder(), "name", debounce=0.01)
    assert not engine.is_open
    engine.focus()
    assert engine.is_open
    engine.dismiss()
    assert not engine.is_open
    engine.set_text("x")
    assert engine.is_open
    engine.close()


def test_display_value_reads_models_and_mappings():
    class Row:
        patient_name = "Maria Lopez"

    assert display_value({"name": "John"}, "name") == "John"
    assert display_value(Row(), "patient_name") == "Maria Lopez"
    assert display_value({}, "name") == ""

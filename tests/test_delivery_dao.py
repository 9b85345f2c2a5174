import asyncio
import types

from shopdesk.services.delivery_dao import SupabaseDeliveryDAO
from shopdesk.services.postgrest_client import quote_filter_value


class _RecordingQuery:
    def __init__(self, calls):
        self.calls = calls

    def __getattr__(self, name):
        def method(*args, **kwargs):
            self.calls.append((name, args))
            return self

        return method

    def execute(self):
        return types.SimpleNamespace(data=[], count=0)


class _RecordingClient:
    def __init__(self):
        self.calls = []

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def table(self, name):
        self.calls.append(("table", (name,)))
        return _RecordingQuery(self.calls)


def test_quote_filter_value_escapes_quotes_and_backslashes():
    assert quote_filter_value("%Бат, (99)%") == '"%Бат, (99)%"'
    assert quote_filter_value('a"b\\c') == '"a\\"b\\\\c"'


def test_list_search_text_is_quoted_inside_or_filter(monkeypatch):
    client = _RecordingClient()
    dao = SupabaseDeliveryDAO("test-token")
    monkeypatch.setattr(dao, "_client", lambda **kwargs: client)

    rows, total = asyncio.run(dao.list_deliveries("store-1", search="Бат,status.eq.delivered)"))

    assert (rows, total) == ([], 0)
    or_filters = [args[0] for name, args in client.calls if name == "or_"]
    assert or_filters == [
        'delivery_number.ilike."%Бат,status.eq.delivered)%",'
        'customer_name.ilike."%Бат,status.eq.delivered)%",'
        'customer_phone.ilike."%Бат,status.eq.delivered)%"'
    ]

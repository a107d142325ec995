import httpx
import pytest
from lxml import etree

from pubflow.core.config import CrossrefConfig
from pubflow.services import crossref_client as crossref_module
from pubflow.services.crossref_client import (
    CrossrefClient,
    doi_url,
    extract_batch_id,
    validate_doi_format,
)


@pytest.fixture
def crossref_config():
    return CrossrefConfig(
        depositor_email="test@example.com",
        depositor_password="password",
        doi_prefix="10.12345",
        api_url="https://test.crossref.org/servlet/deposit",
        metadata_url="https://api.crossref.test",
        journal_title="Fallback Journal",
        journal_issn="1234-5678",
        timeout_seconds=5.0,
    )


@pytest.fixture
def crossref_client(crossref_config):
    return CrossrefClient(config=crossref_config)


def _article(**overrides):
    data = {
        "id": "art-1",
        "title": "Test Article",
        "abstract": "Short abstract",
        "authors": [
            {"given": "John", "family": "Doe", "affiliation": "Test Univ", "orcid": "0000-0001-2345-6789"},
            {"given": "Jane", "family": "Smith"},
        ],
        "journal": {"title": "Journal of Tests", "issn": "1111-2222", "e_issn": "3333-4444"},
        "volume": 4,
        "issue": "2",
        "pages": "11-19",
        "publication_date": "2026-03-05T10:00:00+00:00",
        "doi": "10.12345/pf.2026.00001",
        "url": "https://pubflow.test/article/art-1",
    }
    data.update(overrides)
    return data


def test_generate_xml_structure(crossref_client):
    root = etree.fromstring(crossref_client.generate_xml(_article(), "batch-001"))

    assert root.tag == "{http://www.crossref.org/schema/5.4.0}doi_batch"
    assert root.get("version") == "5.4.0"
    assert root.find(".//{*}head/{*}doi_batch_id").text == "batch-001"
    assert root.find(".//{*}depositor/{*}email_address").text == "test@example.com"
    assert root.find(".//{*}journal_metadata/{*}full_title").text == "Journal of Tests"
    issns = root.findall(".//{*}journal_metadata/{*}issn")
    assert [(i.get("media_type"), i.text) for i in issns] == [("print", "1111-2222"), ("electronic", "3333-4444")]

    issue = root.find(".//{*}journal_issue")
    assert issue.find("{*}journal_volume/{*}volume").text == "4"
    assert issue.find("{*}issue").text == "2"

    persons = root.findall(".//{*}contributors/{*}person_name")
    assert [p.get("sequence") for p in persons] == ["first", "additional"]
    assert persons[0].find("{*}given_name").text == "John"
    assert persons[0].find("{*}surname").text == "Doe"
    assert persons[0].find("{*}affiliations/{*}institution").text == "Test Univ"
    assert persons[0].find("{*}ORCID").text == "https://orcid.org/0000-0001-2345-6789"
    assert persons[1].find("{*}ORCID") is None

    assert root.find(".//{http://www.ncbi.nlm.nih.gov/JATS1}abstract/{*}p").text == "Short abstract"

    pub_date = root.find(".//{*}journal_article/{*}publication_date")
    assert pub_date.find("{*}year").text == "2026"
    assert pub_date.find("{*}month").text == "03"
    assert pub_date.find("{*}day").text == "05"

    assert root.find(".//{*}pages/{*}first_page").text == "11"
    assert root.find(".//{*}pages/{*}last_page").text == "19"

    doi_data = root.find(".//{*}journal_article/{*}doi_data")
    assert doi_data.find("{*}doi").text == "10.12345/pf.2026.00001"
    assert doi_data.find("{*}resource").text == "https://pubflow.test/article/art-1"


def test_generate_xml_falls_back_to_config_and_skips_optional_parts(crossref_client):
    article = _article(
        journal={},
        volume=None,
        issue=None,
        pages=None,
        abstract=None,
        publication_date=123,
        authors=[{"full_name": "Ada Lovelace"}],
    )
    root = etree.fromstring(crossref_client.generate_xml(article, "b"))

    assert root.find(".//{*}journal_metadata/{*}full_title").text == "Fallback Journal"
    assert root.find(".//{*}journal_metadata/{*}issn").text == "1234-5678"
    assert root.find(".//{*}journal_issue") is None
    assert root.find(".//{*}pages") is None
    assert root.find(".//{*}journal_article/{*}publication_date") is None
    person = root.find(".//{*}person_name")
    assert person.find("{*}given_name").text == "Ada"
    assert person.find("{*}surname").text == "Lovelace"


@pytest.mark.parametrize(
    "doi,expected",
    [
        ("10.12345/pf.2026.00001", True),
        ("10.1000/abc(1):2;x", True),
        ("10.123/too-short", False),
        ("doi:10.12345/x", False),
        ("", False),
        (None, False),
    ],
)
def test_validate_doi_format(doi, expected):
    assert validate_doi_format(doi) is expected


def test_doi_helpers():
    assert doi_url("10.12345/abc") == "https://doi.org/10.12345/abc"
    assert doi_url(" 10.12345/abc.1 ") == "https://doi.org/10.12345/abc.1"
    assert extract_batch_id("<submission_id>99871</submission_id>") == "99871"
    assert extract_batch_id("batch_id: pf-2026") == "pf-2026"
    assert extract_batch_id("nothing here") is None


class _FakeResponse:
    def __init__(self, status_code=200, text="", json_body=None):
        self.status_code = status_code
        self.text = text
        self._json = json_body

    def json(self):
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            request = httpx.Request("POST", "https://test.crossref.org/servlet/deposit")
            raise httpx.HTTPStatusError(
                "error", request=request, response=httpx.Response(self.status_code, text=self.text, request=request)
            )


def _patch_async_client(monkeypatch, *, post=None, get=None):
    calls = {}

    class _FakeAsyncClient:
        def __init__(self, *args, **kwargs):
            calls["timeout"] = kwargs.get("timeout")

        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc):
            return False

        async def post(self, url, data=None, files=None):
            calls["post"] = {"url": url, "data": data, "files": files}
            if isinstance(post, Exception):
                raise post
            return post

        async def get(self, url):
            calls["get"] = url
            if isinstance(get, Exception):
                raise get
            return get

    monkeypatch.setattr(crossref_module.httpx, "AsyncClient", _FakeAsyncClient)
    return calls


@pytest.mark.asyncio
async def test_submit_deposit_posts_credentials_and_xml(monkeypatch, crossref_client):
    calls = _patch_async_client(monkeypatch, post=_FakeResponse(text="SUCCESS"))

    body = await crossref_client.submit_deposit(b"<xml/>", file_name="x.xml")

    assert body == "SUCCESS"
    assert calls["timeout"] == 5.0
    assert calls["post"]["url"] == "https://test.crossref.org/servlet/deposit"
    assert calls["post"]["data"]["operation"] == "doMDUpload"
    assert calls["post"]["data"]["login_id"] == "test@example.com"
    assert calls["post"]["files"]["fname"][0] == "x.xml"


@pytest.mark.asyncio
async def test_submit_deposit_requires_config():
    with pytest.raises(ValueError):
        await CrossrefClient(None).submit_deposit(b"<xml/>")


@pytest.mark.asyncio
async def test_register_success_extracts_deposit_id(monkeypatch, crossref_client):
    _patch_async_client(
        monkeypatch, post=_FakeResponse(text="<html>SUCCESS <submission_id>1234</submission_id></html>")
    )
    result = await crossref_client.register(_article())
    assert result.ok
    assert result.deposit_id == "1234"


@pytest.mark.asyncio
async def test_register_reports_http_errors_without_raising(monkeypatch, crossref_client):
    _patch_async_client(monkeypatch, post=_FakeResponse(status_code=401, text="unauthorized"))
    result = await crossref_client.register(_article())
    assert result.status == "error"
    assert "401" in result.message


@pytest.mark.asyncio
async def test_register_reports_timeouts(monkeypatch, crossref_client):
    _patch_async_client(monkeypatch, post=httpx.ReadTimeout("slow"))
    result = await crossref_client.register(_article())
    assert result.status == "error"
    assert "timed out" in result.message


@pytest.mark.asyncio
async def test_register_reports_failure_body(monkeypatch, crossref_client):
    _patch_async_client(monkeypatch, post=_FakeResponse(text="FAILURE: bad xml"))
    result = await crossref_client.register(_article())
    assert result.status == "error"
    assert result.raw == "FAILURE: bad xml"


@pytest.mark.asyncio
async def test_register_without_config_or_valid_doi():
    no_config = await CrossrefClient(None).register(_article())
    assert no_config.status == "error"
    assert "configuration" in no_config.message

    bad = await CrossrefClient(None).register(_article(doi="nope"))
    assert "Invalid DOI" in bad.message


@pytest.mark.asyncio
async def test_get_doi_status(monkeypatch, crossref_client):
    calls = _patch_async_client(
        monkeypatch,
        get=_FakeResponse(json_body={"message": {"created": {"date-time": "2026-01-02T00:00:00Z"}}}),
    )
    status = await crossref_client.get_doi_status("10.12345/abc")
    assert status["registered"] is True
    assert status["registered_date"] == "2026-01-02T00:00:00Z"
    assert calls["get"] == "https://api.crossref.test/works/10.12345%2Fabc"

    _patch_async_client(monkeypatch, get=_FakeResponse(status_code=404))
    assert (await crossref_client.get_doi_status("10.12345/abc"))["status"] == "not_found"

    assert (await crossref_client.get_doi_status("bad"))["status"] == "invalid"

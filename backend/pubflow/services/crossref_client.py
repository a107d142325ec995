import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
from lxml import etree

from pubflow.core.config import CrossrefConfig
from pubflow.models.doi import CrossrefDepositResult

DOI_REGEX = re.compile(r"^10\.\d{4,}/[-._;()/:a-zA-Z0-9]+$")


def validate_doi_format(doi: Optional[str]) -> bool:
    return bool(doi) and bool(DOI_REGEX.match(str(doi).strip()))


def doi_url(doi: str) -> str:
    return f"https://doi.org/{str(doi or '').strip()}"


def extract_batch_id(response_body: str) -> Optional[str]:
    text = str(response_body or "")
    patterns = [
        r"(?i)<submission_id>([^<]+)</submission_id>",
        r"(?i)batch[_\s-]*id\s*[:=]\s*([A-Za-z0-9._-]+)",
        r"(?i)<batch_id>([^<]+)</batch_id>",
        r"(?i)<doi_batch_id>([^<]+)</doi_batch_id>",
    ]
    for pat in patterns:
        matched = re.search(pat, text)
        if matched:
            return matched.group(1).strip()
    return None


class CrossrefClient:
    """
    Crossref API Client

    Supports:
    1. DOI registration through the deposit servlet (XML, schema 5.4.0)
    2. Status lookups against the public works API
    """

    def __init__(self, config: Optional[CrossrefConfig] = None):
        self.deposit_config = config

        self.ns = {
            None: "http://www.crossref.org/schema/5.4.0",
            "xsi": "http://www.w3.org/2001/XMLSchema-instance",
            "jats": "http://www.ncbi.nlm.nih.gov/JATS1",
        }
        self.schema_location = (
            "http://www.crossref.org/schema/5.4.0 http://www.crossref.org/schemas/crossref5.4.0.xsd"
        )

    @property
    def timeout(self) -> float:
        return self.deposit_config.timeout_seconds if self.deposit_config else 30.0

    def _el(self, parent, tag: str, text: Any = None, **attrs):
        node = etree.SubElement(parent, f"{{{self.ns[None]}}}{tag}", **attrs)
        if text is not None:
            node.text = str(text)
        return node

    def generate_xml(self, article_data: Dict[str, Any], batch_id: str) -> bytes:
        """
        Generate Crossref Deposit XML for an article
        """
        root = etree.Element(f"{{{self.ns[None]}}}doi_batch", nsmap=self.ns, version="5.4.0")
        root.set(f"{{{self.ns['xsi']}}}schemaLocation", self.schema_location)

        # 1. Head
        head = self._el(root, "head")
        self._el(head, "doi_batch_id", batch_id)
        self._el(head, "timestamp", datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")[:17])
        depositor = self._el(head, "depositor")
        self._el(depositor, "depositor_name", "PubFlow")
        self._el(
            depositor,
            "email_address",
            self.deposit_config.depositor_email if self.deposit_config else "",
        )
        self._el(head, "registrant", "PubFlow")

        # 2. Body
        body = self._el(root, "body")
        journal = self._el(body, "journal")

        journal_info = article_data.get("journal") or {}
        j_meta = self._el(journal, "journal_metadata")
        self._el(
            j_meta,
            "full_title",
            journal_info.get("title")
            or (self.deposit_config.journal_title if self.deposit_config else ""),
        )
        issn = journal_info.get("issn") or (self.deposit_config.journal_issn if self.deposit_config else None)
        if issn:
            self._el(j_meta, "issn", issn, media_type="print")
        if journal_info.get("e_issn"):
            self._el(j_meta, "issn", journal_info["e_issn"], media_type="electronic")

        year, month, day = self._date_parts(article_data.get("publication_date"))
        if article_data.get("volume") or article_data.get("issue"):
            j_issue = self._el(journal, "journal_issue")
            if year:
                issue_date = self._el(j_issue, "publication_date", media_type="online")
                self._el(issue_date, "year", year)
            if article_data.get("volume"):
                j_volume = self._el(j_issue, "journal_volume")
                self._el(j_volume, "volume", article_data["volume"])
            if article_data.get("issue"):
                self._el(j_issue, "issue", article_data["issue"])

        j_article = self._el(journal, "journal_article", publication_type="full_text")
        titles = self._el(j_article, "titles")
        self._el(titles, "title", article_data.get("title", ""))

        authors = article_data.get("authors") or []
        if authors:
            contributors = self._el(j_article, "contributors")
            for idx, author in enumerate(authors):
                person_name = self._el(
                    contributors,
                    "person_name",
                    contributor_role="author",
                    sequence="first" if idx == 0 else "additional",
                )
                given_name = author.get("given") or author.get("first_name") or ""
                surname = author.get("family") or author.get("last_name") or ""
                if not given_name and not surname and author.get("full_name"):
                    parts = author["full_name"].strip().split(" ", 1)
                    given_name = parts[0]
                    surname = parts[1] if len(parts) > 1 else ""

                self._el(person_name, "given_name", given_name)
                self._el(person_name, "surname", surname)
                if author.get("affiliation"):
                    affiliations = self._el(person_name, "affiliations")
                    self._el(affiliations, "institution", author["affiliation"])
                if author.get("orcid"):
                    orcid = str(author["orcid"])
                    if not orcid.startswith("http"):
                        orcid = f"https://orcid.org/{orcid}"
                    self._el(person_name, "ORCID", orcid)

        if article_data.get("abstract"):
            abstract = etree.SubElement(j_article, f"{{{self.ns['jats']}}}abstract")
            etree.SubElement(abstract, f"{{{self.ns['jats']}}}p").text = str(article_data["abstract"])

        if year:
            pub_date = self._el(j_article, "publication_date", media_type="online")
            if month:
                self._el(pub_date, "month", month)
            if day:
                self._el(pub_date, "day", day)
            self._el(pub_date, "year", year)

        pages = str(article_data.get("pages") or "").strip()
        if pages:
            first, _, last = pages.partition("-")
            page_el = self._el(j_article, "pages")
            self._el(page_el, "first_page", first.strip())
            if last.strip():
                self._el(page_el, "last_page", last.strip())

        doi_data = self._el(j_article, "doi_data")
        self._el(doi_data, "doi", article_data.get("doi", ""))
        self._el(doi_data, "resource", article_data.get("url", ""))

        return etree.tostring(root, pretty_print=True, xml_declaration=True, encoding="UTF-8")

    @staticmethod
    def _date_parts(value: Any) -> tuple[Optional[str], Optional[str], Optional[str]]:
        # Assume ISO date / datetime; anything else is dropped from the deposit
        if not isinstance(value, str) or not value.strip():
            return None, None, None
        parts = value.strip()[:10].split("-")
        if not parts[0].isdigit() or len(parts[0]) != 4:
            return None, None, None
        month = parts[1] if len(parts) >= 2 and parts[1].isdigit() else None
        day = parts[2] if len(parts) >= 3 and parts[2].isdigit() else None
        return parts[0], month, day

    async def submit_deposit(
        self, xml_content: bytes, file_name: str = "crossref_submission.xml"
    ) -> str:
        """
        Submit XML to the Crossref deposit servlet
        """
        if not self.deposit_config:
            raise ValueError("Crossref deposit configuration missing")

        params = {
            "operation": "doMDUpload",
            "login_id": self.deposit_config.depositor_email,
            "login_passwd": self.deposit_config.depositor_password,
        }
        files = {"fname": (file_name, xml_content, "application/xml")}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.deposit_config.api_url, data=params, files=files)
            response.raise_for_status()
            return response.text

    async def register(self, article_data: Dict[str, Any]) -> CrossrefDepositResult:
        """
        One registration attempt. Never raises for service-side problems;
        they come back as status="error" so the caller can persist them.
        """
        doi = str(article_data.get("doi") or "").strip()
        now = datetime.now(timezone.utc).isoformat()
        if not validate_doi_format(doi):
            return CrossrefDepositResult(
                status="error",
                message="Invalid DOI format: DOI must follow format 10.xxxx/xxxxx",
                timestamp=now,
            )
        if not self.deposit_config:
            return CrossrefDepositResult(
                status="error",
                message="Crossref deposit configuration missing",
                timestamp=now,
            )

        batch_id = f"pf-{datetime.now(timezone.utc).strftime('%Y%m%d%H%M%S')}-" + (
            "".join(ch for ch in str(article_data.get("id") or "") if ch.isalnum())[:8] or "article"
        )
        xml_content = self.generate_xml(article_data, batch_id)
        try:
            body = await self.submit_deposit(xml_content, file_name=f"doi-{batch_id}.xml")
        except httpx.TimeoutException as e:
            return CrossrefDepositResult(
                status="error",
                message=f"Crossref deposit timed out: {e}",
                timestamp=now,
            )
        except httpx.HTTPStatusError as e:
            return CrossrefDepositResult(
                status="error",
                message=f"Crossref deposit rejected with HTTP {e.response.status_code}",
                raw=e.response.text,
                timestamp=now,
            )
        except httpx.HTTPError as e:
            return CrossrefDepositResult(
                status="error",
                message=f"Crossref deposit failed: {e}",
                timestamp=now,
            )

        if "FAILURE" in body.upper() and "SUCCESS" not in body.upper():
            return CrossrefDepositResult(
                status="error",
                message="Crossref reported a deposit failure",
                raw=body,
                timestamp=now,
            )
        return CrossrefDepositResult(
            status="success",
            deposit_id=extract_batch_id(body) or batch_id,
            message="DOI deposit accepted by Crossref",
            raw=body,
            timestamp=now,
        )

    async def get_doi_status(self, doi: str) -> Dict[str, Any]:
        """
        Ask the works API whether a DOI resolves.
        """
        if not validate_doi_format(doi):
            return {"status": "invalid", "registered": False}

        base_url = self.deposit_config.metadata_url if self.deposit_config else "https://api.crossref.org"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(f"{base_url}/works/{quote(doi, safe='')}")
        except httpx.HTTPError:
            return {"status": "error", "registered": False}

        if response.status_code == 404:
            return {"status": "not_found", "registered": False}
        if response.status_code >= 400:
            return {"status": "error", "registered": False}

        message = (response.json() or {}).get("message")
        if not message:
            return {"status": "not_found", "registered": False}
        return {
            "status": "registered",
            "registered": True,
            "registered_date": ((message.get("created") or {}).get("date-time")),
            "metadata": message,
        }

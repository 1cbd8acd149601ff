"""Shared test fixtures: a temporary repository database seeded with a small collection."""

from dataclasses import dataclass
from pathlib import Path
import sys

import pytest


SRC_ROOT = Path(__file__).resolve().parents[1] / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from resource_search.config import Settings
from resource_search.store import ConfigRepository, Database, ResourceRepository


@dataclass
class SeededRepository:
    """Ids of the seeded collection.

    Item sets: ``photographs`` (item1, item2, item4) and ``letters`` (item2, item3).
    Sites: ``archive`` (item1, item2) and ``exhibit`` (item2, item3).
    item4 is private, item5 only has a private subject, media1 belongs to item3.
    """

    photographs: int
    letters: int
    item1: int
    item2: int
    item3: int
    item4: int
    item5: int
    media1: int
    archive: int
    exhibit: int
    image_class: int
    text_class: int
    template: int

    @property
    def public_items(self) -> list[int]:
        return [self.item1, self.item2, self.item3, self.item5]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep host configuration out of the tests."""
    for key in ("DATABASE_PATH", "LOG_LEVEL", "LOG_JSON", "DEFAULT_PER_PAGE", "DEFAULT_FACET_LIMIT"):
        monkeypatch.delenv(f"RESOURCE_SEARCH_{key}", raising=False)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "repository.db"


@pytest.fixture
def settings(db_path):
    return Settings(database_path=db_path, log_json=False)


@pytest.fixture
def database(db_path):
    db = Database(db_path, busy_timeout_ms=1000)
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def resources(database):
    return ResourceRepository(database)


@pytest.fixture
def configs(database):
    return ConfigRepository(database)


@pytest.fixture
def seeded(resources):
    """Build the collection described by :class:`SeededRepository`."""
    resources.add_vocabulary("dcterms", "http://purl.org/dc/terms/", "Dublin Core")
    resources.add_vocabulary("dctype", "http://purl.org/dc/dcmitype/", "Dublin Core Type")
    resources.add_vocabulary("bibo", "http://purl.org/ontology/bibo/", "Bibliographic Ontology")
    for term in (
        "dcterms:title",
        "dcterms:date",
        "dcterms:subject",
        "dcterms:description",
        "dcterms:relation",
        "dcterms:tableOfContents",
        "bibo:content",
    ):
        resources.add_property(term)
    image_class = resources.add_resource_class("dctype:Image", "Image")
    text_class = resources.add_resource_class("dctype:Text", "Text")
    template = resources.add_resource_template("Base Resource")

    photographs = resources.add_resource("item_sets", title="Photographs")
    letters = resources.add_resource("item_sets", title="Letters")

    item1 = resources.add_resource(
        "items",
        title="Paris in Spring",
        resource_class_id=image_class,
        resource_template_id=template,
        values=[("dcterms:title", "Paris in Spring"), ("dcterms:date", "1923"), ("dcterms:subject", "Paris")],
    )
    item2 = resources.add_resource(
        "items",
        title="Paris at Night",
        resource_class_id=image_class,
        values=[("dcterms:title", "Paris at Night"), ("dcterms:date", "1931"), ("dcterms:subject", "Paris")],
    )
    item3 = resources.add_resource(
        "items",
        title="London Bridge",
        resource_class_id=text_class,
        resource_template_id=template,
        values=[
            ("dcterms:title", "London Bridge"),
            ("dcterms:date", "2014-05-01"),
            ("dcterms:subject", "London"),
            ("bibo:content", "Long extracted content about bridges"),
        ],
    )
    item4 = resources.add_resource(
        "items",
        title="Secret Paris",
        is_public=False,
        values=[("dcterms:title", "Secret Paris"), ("dcterms:date", "-523"), ("dcterms:subject", "Paris")],
    )
    item5 = resources.add_resource("items", title="Untitled", values=[("dcterms:title", "Untitled")])
    resources.add_value(item5, "dcterms:subject", "hidden", is_public=False)
    resources.add_value(item1, "dcterms:description", "Printemps", lang="fr")
    resources.add_value(item2, "dcterms:description", "Night", lang="en")
    resources.add_value(item3, "dcterms:relation", value_resource_id=letters)

    media1 = resources.add_resource(
        "media", title="Bridge photo", item_id=item3, values=[("dcterms:title", "Bridge photo")]
    )

    for item_id in (item1, item2, item4):
        resources.add_to_item_set(item_id, photographs)
    for item_id in (item2, item3):
        resources.add_to_item_set(item_id, letters)

    archive = resources.add_site("archive", "Archive")
    exhibit = resources.add_site("exhibit", "Exhibit")
    for item_id in (item1, item2):
        resources.attach_to_site(item_id, archive)
    for item_id in (item2, item3):
        resources.attach_to_site(item_id, exhibit)

    return SeededRepository(
        photographs=photographs,
        letters=letters,
        item1=item1,
        item2=item2,
        item3=item3,
        item4=item4,
        item5=item5,
        media1=media1,
        archive=archive,
        exhibit=exhibit,
        image_class=image_class,
        text_class=text_class,
        template=template,
    )


@pytest.fixture
def engine(configs, seeded):
    return configs.add_engine(
        "main",
        resource_types=["items", "item_sets", "media"],
        sort_fields={"date": "dcterms:date"},
    )

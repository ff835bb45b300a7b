import logging

import pytest


def person(first, last, dept, title, **extra):
    row = {"First Name": first, "Last Name": last, "Department": dept, "Job Title": title}
    row.update(extra)
    return row


@pytest.fixture
def office_rows():
    return [
        person("Michael", "Scott", "Education", "Regional Manager"),
        person("Dwight", "Schrute", "Sales", "Assistant"),
    ]


@pytest.fixture(autouse=True)
def _reset_iamsync_handlers():
    # build_logger attaches handlers to the shared "iamsync" logger
    yield
    base = logging.getLogger("iamsync")
    for h in list(base.handlers):
        base.removeHandler(h)
        h.close()

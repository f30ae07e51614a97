import pytest

import zatca_appserver
from helpers import ACME_RECORDS, to_qr_text
from zatca_generator import encode_tlv


@pytest.fixture
def acme_records():
    return list(ACME_RECORDS)


@pytest.fixture
def acme_bytes():
    return encode_tlv(ACME_RECORDS)


@pytest.fixture
def acme_qr():
    return to_qr_text(ACME_RECORDS)


@pytest.fixture
def client():
    zatca_appserver.app.config["TESTING"] = True
    zatca_appserver.sessions.clear()
    with zatca_appserver.app.test_client() as test_client:
        yield test_client
    zatca_appserver.sessions.clear()

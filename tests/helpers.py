import base64

from zatca_generator import encode_tlv

ACME_RECORDS = [
    (1, "Acme Corp"),
    (2, "300000000000003"),
    (3, "2023-01-05T13:00:00"),
    (4, "115.00"),
    (5, "15.00"),
]


def to_qr_text(records):
    return base64.b64encode(encode_tlv(records)).decode("ascii")


def replace_tag(records, tag, value):
    return [(t, value if t == tag else v) for t, v in records]

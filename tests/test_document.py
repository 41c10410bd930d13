import io

import pytest

from rmarshal.format.document import MarshalDocument, load, loads
from rmarshal.format.marshal import (
    MarshalNil, MarshalBool, MarshalFixnum, MarshalArray, InvalidBackReference,
)
from rmarshal.format.helpers import BufferUnderrun

V = b'\x04\x08'


def test_document():
    doc = MarshalDocument(io.BytesIO(V + b'T'))
    assert doc.version == (4, 8)
    assert doc.major == 4 and doc.minor == 8
    assert doc.root == MarshalBool(True)
    assert list(doc.show()) == ['marshal version 4.8', 'true']

def test_version_not_checked():
    doc = MarshalDocument(io.BytesIO(b'\x09\x02i\x06'))
    assert doc.version == (9, 2)
    assert doc.root == MarshalFixnum(1)

@pytest.mark.parametrize('data', [b'', b'\x04'])
def test_truncated_header(data):
    with pytest.raises(BufferUnderrun) as e:
        loads(data)
    assert e.value.labels == ['Marshal Version']

def test_missing_object():
    with pytest.raises(BufferUnderrun):
        loads(V)

def test_trailing_bytes_left():
    fp = io.BytesIO(V + b'0junk')
    assert load(fp) == MarshalNil()
    assert fp.read() == b'junk'

def test_loads_bytearray():
    assert loads(bytearray(V + b'[\x07i\x00i\x0a')) == MarshalArray([MarshalFixnum(0), MarshalFixnum(5)])

def test_tables_not_shared():
    loads(V + b':\x06a')
    with pytest.raises(InvalidBackReference):
        loads(V + b';\x00')

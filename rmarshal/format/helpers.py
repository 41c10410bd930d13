class FormatError(Exception):
    """Base of all decode failures.  labels lists the decoding routines
    the failure passed through, outermost first."""

    def __init__(self, *args):
        super().__init__(*args)
        self.labels = []

    def __str__(self):
        msg = super().__str__()
        if self.labels:
            return '{}: {}'.format(' > '.join(self.labels), msg)
        return msg


class BufferUnderrun(FormatError):
    pass


def read_bytes(fp, size):
    if size < 0:
        raise BufferUnderrun("negative length ({})".format(size))
    buf = fp.read(size)
    if len(buf) != size:
        raise BufferUnderrun("premature EOF")
    return buf

def read_byte(fp):
    return read_bytes(fp, 1)[0]

def read_le(fp, size, signed=False):
    return int.from_bytes(read_bytes(fp, size), 'little', signed=signed)

import io

from .marshal import MarshalContext, DEFAULT_MAX_DEPTH


class MarshalDocument:
    """Represents a marshal stream in deserialized form.

    A stream is basically two version bytes + a single object.  The version
    is kept, but not checked - every Ruby since 1.8 writes 4.8 anyway.
    """
    __slots__ = 'major', 'minor', 'root'

    def __init__(self, fp, max_depth=DEFAULT_MAX_DEPTH):
        ctx = MarshalContext(fp, max_depth)
        self.major, self.minor = ctx.load_version()
        self.root = ctx.load_object()

    @property
    def version(self):
        return self.major, self.minor

    def show(self):
        yield "marshal version {}.{}".format(self.major, self.minor)
        yield from self.root.show()


def load(fp, max_depth=DEFAULT_MAX_DEPTH):
    """Deserializes a marshal stream from a given file.  Returns
    a MarshalNode."""
    return MarshalDocument(fp, max_depth).root

def loads(data, max_depth=DEFAULT_MAX_DEPTH):
    """Like load, but takes the stream as bytes."""
    return load(io.BytesIO(bytes(data)), max_depth)

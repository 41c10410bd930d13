"""Reads the Ruby marshal format.

Ruby's Marshal is the language's native serialization format.  It's what
Marshal.dump and Marshal.load speak, and it turns up in lots of places where
Ruby programs store their state: gem indexes (the latest_specs.4.8 files),
session cookies of older Rails apps, game data files of RPG Maker and its
descendants, various caches.  The format is documented, sort of, in
marshal_rdoc, and the authoritative reference is marshal.c.

A marshal stream starts with two version bytes: major and minor.  They've
been 4 and 8 since Ruby 1.8, and every Ruby since then writes exactly that.
We read them and keep them around, but don't care about their values.

After the header comes a single object.  Every object starts with a type code
byte, which is a printable ASCII character picked for its mnemonic value.
Further data stored for the object, if any, is determined by the type code.
There is no framing, no way to "jump" across objects, nor an ending marker:
you end reading when you got enough data to deserialize the object.

We support the following type codes:

- '0': nil
- 'T' and 'F': true and false
- 'i': a fixnum, ie. a small integer, stored in the variable-width encoding
  described below
- 'f': a float.  Stored as a string containing the decimal representation,
  so 1.5 is stored as '1.5', and infinities as 'inf' and '-inf'.
- '"': a byte string.  The encoding is not stored here - see 'I'.
- ':': a symbol.  Stored like a string, but also remembered in the symbol
  table, so that it can be referenced later.
- ';': a symlink, ie. a reference to an earlier symbol by its index in the
  symbol table.  Since every symbol is written out in full only once per
  stream, you'll see lots of these in any real-world file.
- '[': an array.  A fixnum count followed by that many objects.
- '{': a hash.  A fixnum count followed by that many key/value pairs.  Order
  is preserved and nothing stops a stream from containing duplicate keys.
- 'I': an object with instance variables.  The wrapped object comes first,
  followed by a count of ivars and then the ivars themselves as key/value
  pairs.  The only use of this we support is attaching an encoding to
  a string: the 'E' ivar with true means UTF-8, with false US-ASCII, and the
  'encoding' ivar holds the encoding name as a string for everything else.
- '@': an object link, ie. a reference to an earlier object by its index in
  the object table.

Everything else (user classes, structs, bignums, regexps, modules, and the
like) is unsupported.  Encountering an unsupported type code doesn't abort
the whole thing: we return a MarshalUnsupported node in its place and carry
on.  Since we have no idea how long the unsupported object is, carrying on
is somewhat optimistic.

The object table is a bit of a lie here.  In real Ruby, every non-immediate
object gets an entry in the object table, and links can refer to any of
them.  We only register ivar-wrapped objects, since these are the only
objects the links are expected to point to in the streams we care about.
Also, the entry is added after the object is completely loaded, not before,
so a link cannot refer to an object still being loaded.
"""

from contextlib import contextmanager
import codecs

from .helpers import read_byte, read_le, read_bytes, FormatError
from rmarshal.show import indent, preindent, prepair

class MarshalError(FormatError):
    pass

class InvalidFixnum(MarshalError):
    pass

class InvalidFloat(MarshalError):
    pass

class InvalidIvar(MarshalError):
    pass

class InvalidBackReference(MarshalError):
    pass

class TagGuardFailure(MarshalError):
    pass

class DepthLimitExceeded(MarshalError):
    pass

class MarshalConvertError(MarshalError):
    pass


# Every level of nesting costs a few python frames in loading as well as in
# str(), repr(), show() and native(), all of which recurse.
DEFAULT_MAX_DEPTH = 100

# Ruby encoding names that python doesn't know under the same name.  None
# means the payload is binary and stays as bytes.
RUBY_ENCODINGS = {
    'ASCII-8BIT': None,
    'BINARY': None,
    'WINDOWS-31J': 'cp932',
    'CP65001': 'utf-8',
}

def _hashable(val):
    if isinstance(val, list):
        return tuple(_hashable(x) for x in val)
    if isinstance(val, dict):
        return tuple((k, _hashable(v)) for k, v in val.items())
    return val


# nodes

class MarshalNode:
    """A marshal object."""
    __slots__ = ()

    def show(self):
        yield str(self)

    def native(self):
        """Converts the node to a plain python object."""
        raise MarshalConvertError("{} has no python equivalent".format(type(self).__name__))

    def __eq__(self, other):
        return type(self) is type(other) and all(
            getattr(self, name) == getattr(other, name)
            for name in self.__slots__
        )

    __hash__ = None

    def __repr__(self):
        return '{}({})'.format(type(self).__name__, ', '.join(
            repr(getattr(self, name)) for name in self.__slots__
        ))


# singletons

class MarshalNil(MarshalNode):
    """The nil singleton."""
    __slots__ = ()

    def __str__(self):
        return 'nil'

    def native(self):
        return None


class MarshalBool(MarshalNode):
    """A true or false value."""
    __slots__ = 'val',

    def __init__(self, val):
        self.val = val

    def __str__(self):
        return 'true' if self.val else 'false'

    def native(self):
        return self.val


# primitive types

class MarshalFixnum(MarshalNode):
    """A fixnum.  Never wider than 32 bits in the stream; anything bigger
    is stored by Ruby as a bignum, which we don't support."""
    __slots__ = 'val',

    def __init__(self, val):
        self.val = val

    def __str__(self):
        return str(self.val)

    def native(self):
        return self.val


class MarshalFloat(MarshalNode):
    __slots__ = 'val',

    def __init__(self, val):
        self.val = val

    def __str__(self):
        return repr(self.val)

    def native(self):
        return self.val


class MarshalString(MarshalNode):
    """A raw byte string, with no encoding attached.  Strings with an
    encoding come wrapped in MarshalIvar."""
    __slots__ = 'val',

    def __init__(self, val):
        self.val = val

    def __str__(self):
        return repr(self.val)

    def native(self):
        return self.val


class MarshalSymbol(MarshalNode):
    """A symbol, whether read in full or through a symlink.  val is the raw
    name."""
    __slots__ = 'val',

    def __init__(self, val):
        self.val = val

    def __str__(self):
        return ':' + self.val.decode('utf-8', 'backslashreplace')

    def native(self):
        try:
            return self.val.decode('utf-8')
        except UnicodeDecodeError as e:
            raise MarshalConvertError("symbol name not utf-8 ({!r})".format(self.val)) from e


# containers

class MarshalArray(MarshalNode):
    """An array.  val is a list of MarshalNode."""
    __slots__ = 'val',

    def __init__(self, val):
        self.val = val

    def __str__(self):
        return '[{}]'.format(', '.join(str(v) for v in self.val))

    def show(self):
        if not self.val:
            yield '[]'
            return
        yield 'array ({} items)'.format(len(self.val))
        for idx, item in enumerate(self.val):
            yield from indent(preindent(idx, item.show()))

    def native(self):
        return [v.native() for v in self.val]


class MarshalHash(MarshalNode):
    """A hash.  val is a list of (key, value) pairs, in stream order.
    Duplicate keys are kept."""
    __slots__ = 'val',

    def __init__(self, val):
        self.val = val

    def __str__(self):
        return '{{{}}}'.format(', '.join('{} => {}'.format(k, v) for k, v in self.val))

    def show(self):
        if not self.val:
            yield '{}'
            return
        yield 'hash ({} pairs)'.format(len(self.val))
        for key, val in self.val:
            yield from indent(prepair(key.show(), val.show()))

    def native(self):
        """Later duplicates win, like they would in Ruby."""
        return {_hashable(k.native()): v.native() for k, v in self.val}


# ivars

class MarshalIvar(MarshalNode):
    """An object with an encoding ivar attached.  obj is the wrapped node
    (practically always a MarshalString), encoding is the raw encoding
    name."""
    __slots__ = 'obj', 'encoding'

    def __init__(self, obj, encoding):
        self.obj = obj
        self.encoding = encoding

    @property
    def payload(self):
        """The raw bytes of the wrapped string."""
        if not isinstance(self.obj, MarshalString):
            raise MarshalConvertError("ivar wraps {}, not a string".format(type(self.obj).__name__))
        return self.obj.val

    def __str__(self):
        return '{} ({})'.format(self.obj, self.encoding.decode('ascii', 'backslashreplace'))

    def native(self):
        if not isinstance(self.obj, MarshalString):
            return self.obj.native()
        name = self.encoding.decode('ascii', 'replace')
        codec = RUBY_ENCODINGS.get(name.upper(), name)
        if codec is None:
            return self.obj.val
        try:
            return self.obj.val.decode(codecs.lookup(codec).name)
        except LookupError as e:
            raise MarshalConvertError("unknown encoding {}".format(name)) from e
        except UnicodeDecodeError as e:
            raise MarshalConvertError("string not valid {}".format(name)) from e
        except ValueError as e:
            raise MarshalConvertError("bad encoding name {!r}".format(name)) from e


# the error node

class MarshalUnsupported(MarshalNode):
    """Stands in for an object with a type code we don't know.  code is
    the type code byte."""
    __slots__ = 'code',

    def __init__(self, code):
        self.code = code

    def __str__(self):
        return '<unsupported {!r}>'.format(bytes([self.code]))


# reader functions

MARSHAL_CODES = {}

def _code(code):
    """Register a reader function.  code is the type code, passed as string
    for clarity."""
    def inner(function):
        MARSHAL_CODES[ord(code)] = function
        return function
    return inner

# singletons - nothing interesting.

@_code('0')
def load_nil(ctx):
    return MarshalNil()

@_code('T')
def load_true(ctx):
    return MarshalBool(True)

@_code('F')
def load_false(ctx):
    return MarshalBool(False)

# fixnums and strings.  The hard part is in MarshalContext.fixnum.

@_code('i')
def load_fixnum(ctx):
    return MarshalFixnum(ctx.fixnum())

@_code('"')
def load_string(ctx):
    return MarshalString(ctx.raw_string())

# float.  Ruby dumps these through its own float formatter, which produces
# "inf", "-inf" and "nan" for the special values - python's float() accepts
# these just fine.

@_code('f')
def load_float(ctx):
    with ctx.label("Float"):
        raw = ctx.raw_string()
        try:
            res = float(raw.decode('ascii'))
        except ValueError:
            raise InvalidFloat("invalid float literal ({!r})".format(raw)) from None
    return MarshalFloat(res)

# symbols.  Each symbol is written out in full the first time it occurs, and
# by its index in the symbol table afterwards.

@_code(':')
def load_symbol(ctx):
    with ctx.label("Symbol"):
        res = MarshalSymbol(ctx.raw_string())
    ctx.symbols.append(res)
    return res

@_code(';')
def load_symlink(ctx):
    with ctx.label("Symlink"):
        return ctx.lookup(ctx.symbols, ctx.fixnum(), MarshalSymbol)

# containers

@_code('[')
def load_array(ctx):
    with ctx.label("Array"):
        len_ = ctx.fixnum()
        res = MarshalArray([])
        with ctx.nested():
            for x in range(len_):
                res.val.append(ctx.load_object())
    return res

@_code('{')
def load_hash(ctx):
    with ctx.label("Hash"):
        len_ = ctx.fixnum()
        res = MarshalHash([])
        with ctx.nested():
            for x in range(len_):
                key = ctx.load_object()
                val = ctx.load_object()
                res.val.append((key, val))
    return res

# ivars.  The ivar count is read, but we only ever handle a single ivar,
# and it has to be the encoding.  A string with more ivars than that will
# desync the stream.

@_code('I')
def load_ivar(ctx):
    with ctx.label("IVar"), ctx.nested():
        obj = ctx.load_object()
        ctx.fixnum()
        key = ctx.load_object()
        val = ctx.load_object()
        if key == MarshalSymbol(b'E'):
            if not isinstance(val, MarshalBool):
                raise InvalidIvar("E should be followed by bool, got {}".format(type(val).__name__))
            encoding = b'UTF-8' if val.val else b'US-ASCII'
        elif key == MarshalSymbol(b'encoding'):
            if not isinstance(val, MarshalString):
                raise InvalidIvar("encoding should be followed by string, got {}".format(type(val).__name__))
            encoding = val.val
        else:
            raise InvalidIvar("invalid ivar ({})".format(key))
    res = MarshalIvar(obj, encoding)
    ctx.objects.append(res)
    return res

@_code('@')
def load_object_link(ctx):
    with ctx.label("ObjectLink"):
        return ctx.lookup(ctx.objects, ctx.fixnum(), MarshalIvar)


class MarshalContext:
    """State of a single marshal load: the input file, the object and
    symbol tables, and the current nesting level.  Create a new one for
    every stream - the tables only make sense within a single stream."""

    def __init__(self, fp, max_depth=DEFAULT_MAX_DEPTH):
        self.fp = fp
        self.max_depth = max_depth
        self.objects = []
        self.symbols = []
        self.level = 0

    @contextmanager
    def label(self, name):
        """Marks any FormatError passing through with the given name."""
        try:
            yield
        except FormatError as e:
            e.labels.insert(0, name)
            raise

    @contextmanager
    def nested(self):
        """Guards a level of container nesting against max_depth."""
        if self.level >= self.max_depth:
            raise DepthLimitExceeded("nesting deeper than {} levels".format(self.max_depth))
        self.level += 1
        try:
            yield
        finally:
            self.level -= 1

    def load_version(self):
        """Loads the stream header, returns (major, minor)."""
        with self.label("Marshal Version"):
            major = self.byte()
            minor = self.byte()
        return major, minor

    def load_object(self):
        """Loads an object from file, returns a MarshalNode.

        Unknown type codes result in MarshalUnsupported.
        """
        code = self.byte()
        fun = MARSHAL_CODES.get(code)
        if fun is None:
            return MarshalUnsupported(code)
        return fun(self)

    def load_nil(self):
        """Loads a nil, insisting on the type code.  Returns None."""
        with self.label("Nil"):
            self.tag('0')
        return None

    def load_bool(self):
        """Loads true or false, insisting on the type code.  Returns a raw
        bool."""
        with self.label("Bool"):
            code = self.byte()
            if code == ord('T'):
                return True
            elif code == ord('F'):
                return False
            raise TagGuardFailure("bool expected, got {!r}".format(bytes([code])))

    def tag(self, code):
        """Reads a type code, makes sure it's the expected one."""
        with self.label("Tag"):
            got = self.byte()
            if got != ord(code):
                raise TagGuardFailure("{!r} expected, got {!r}".format(code, chr(got)))

    def fixnum(self):
        """Reads a fixnum in the variable-width encoding.  The first byte,
        taken as signed, is either the value itself offset by 5 (for small
        values), or the count of little-endian bytes that follow, negated
        for negative numbers."""
        with self.label("Fixnum"):
            x = read_le(self.fp, 1, signed=True)
            if x == 0:
                return 0
            elif x == 1:
                return read_le(self.fp, 1)
            elif x == -1:
                res = read_le(self.fp, 1, signed=True)
                if 0 <= res <= 127:
                    return res - 256
                return res
            elif x == 2:
                return read_le(self.fp, 2)
            elif x == -2:
                return read_le(self.fp, 2, signed=True)
            elif x == 3:
                return read_le(self.fp, 3)
            elif x == -3:
                return read_le(self.fp, 3, signed=True)
            elif x == 4:
                return read_le(self.fp, 4)
            elif x == -4:
                return read_le(self.fp, 4, signed=True)
            elif x >= 6:
                return x - 5
            elif x <= -6:
                return x + 5
            raise InvalidFixnum("invalid fixnum encoding ({})".format(x))

    def raw_string(self):
        """Reads a fixnum length and that many raw bytes."""
        with self.label("RawString"):
            len_ = self.fixnum()
            return self.bytes(len_)

    def lookup(self, table, idx, type_):
        """Resolves a link: fetches entry idx of the object or symbol
        table, which has to be of type type_."""
        if not 0 <= idx < len(table):
            raise InvalidBackReference("invalid reference ({} of {})".format(idx, len(table)))
        res = table[idx]
        if not isinstance(res, type_):
            raise InvalidBackReference("{} expected, got {}".format(type_.__name__, type(res).__name__))
        return res

    def bytes(self, len_):
        """Reads given amount of raw bytes from file."""
        return read_bytes(self.fp, len_)

    def byte(self):
        """Reads a raw byte from file."""
        return read_byte(self.fp)

def indent(lines):
    for line in lines:
        yield '\t' + line

def preindent(pref, lines):
    it = iter(lines)
    yield "{}: {}".format(pref, next(it))
    for line in it:
        yield '\t' + line

def prepair(key, val):
    """Shows a key/value pair.  Both are show() outputs; the value goes on
    the last line of the key."""
    key = list(key)
    yield from key[:-1]
    it = iter(val)
    yield "{} => {}".format(key[-1], next(it))
    for line in it:
        yield '\t' + line

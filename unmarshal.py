#!/usr/bin/env python3

"""Dumps Ruby marshal files in readable form.

Every file given on the command line is loaded with rmarshal.format.document
and the resulting object tree is printed, one node per line, with nested
objects indented below their container.  Array items are prefixed with their
index, hash values with their key.

Only a subset of marshal is supported: nil, booleans, fixnums, floats,
strings (with or without encoding), symbols, arrays and hashes.  Objects of
other types show up as <unsupported 'X'>, and anything after them is likely
garbage.  Files that fail to load entirely are reported and skipped; the exit
status is 1 if any of them did.
"""

import sys

from rmarshal.format.document import MarshalDocument
from rmarshal.format.helpers import FormatError

def main(argv=None):
    if argv is None:
        argv = sys.argv[1:]
    status = 0
    for fname in argv:
        print("{}...".format(fname))
        try:
            with open(fname, 'rb') as fp:
                doc = MarshalDocument(fp)
        except (OSError, FormatError) as e:
            print("{}: error: {}".format(fname, e), file=sys.stderr)
            status = 1
            continue
        for line in doc.show():
            print(line)
    return status

if __name__ == '__main__':
    sys.exit(main())

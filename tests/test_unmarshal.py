import unmarshal


def test_dump(tmp_path, capsys):
    path = tmp_path / 'data.marshal'
    path.write_bytes(b'\x04\x08[\x07i\x00I"\x07hi\x06:\x06ET')
    assert unmarshal.main([str(path)]) == 0
    out = capsys.readouterr().out.splitlines()
    assert out == [
        '{}...'.format(path),
        'marshal version 4.8',
        'array (2 items)',
        '\t0: 0',
        "\t1: b'hi' (UTF-8)",
    ]

def test_errors(tmp_path, capsys):
    good = tmp_path / 'good.marshal'
    good.write_bytes(b'\x04\x080')
    bad = tmp_path / 'bad.marshal'
    bad.write_bytes(b'\x04\x08[\x07')
    missing = tmp_path / 'missing.marshal'
    assert unmarshal.main([str(bad), str(missing), str(good)]) == 1
    captured = capsys.readouterr()
    assert captured.out.splitlines()[-1] == 'nil'
    err = captured.err.splitlines()
    assert err[0] == '{}: error: Array: premature EOF'.format(bad)
    assert err[1].startswith('{}: error: '.format(missing))

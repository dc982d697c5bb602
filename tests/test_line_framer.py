from alienbridge.line_framer import LineFramer


def test_marker_split_across_chunks():
    framer = LineFramer()
    framer.feed(b"Welcome\r\nUser")
    assert not framer.contains_marker("Username>")
    framer.feed(b"name>")
    assert framer.contains_marker("Username>")


def test_drain_strips_cr_and_clears():
    framer = LineFramer()
    framer.feed(b"ECHO\r\nline1\r")
    framer.feed(b"\nline2\r\n\r\nAlien>")
    assert framer.drain_lines() == ["ECHO", "line1", "line2", "", "Alien>"]
    assert len(framer) == 0
    assert framer.drain_lines() == [""]


def test_multibyte_char_split_between_reads():
    framer = LineFramer("utf-8")
    data = "tag→1\n".encode("utf-8")
    framer.feed(data[:4])
    framer.feed(data[4:])
    assert framer.drain_lines() == ["tag→1", ""]


def test_invalid_bytes_are_replaced():
    framer = LineFramer()
    framer.feed(b"ab\xffcd\n")
    lines = framer.drain_lines()
    assert lines[0] == "ab�cd"


def test_clear_and_empty_feed():
    framer = LineFramer()
    framer.feed(b"")
    assert framer.text == ""
    framer.feed(b"junk")
    framer.clear()
    assert not framer.contains_marker("junk")


def test_drain_complete_lines_holds_the_tail():
    framer = LineFramer()
    framer.feed(b"2024/05/01 10:00:00.000,Dock,0,E2")
    assert framer.drain_complete_lines() == []
    assert framer.text == "2024/05/01 10:00:00.000,Dock,0,E2"

    framer.feed(b"00 3411,-48.0\r")
    assert framer.drain_complete_lines() == []
    framer.feed(b"\nnext,1\r\nhalf")
    assert framer.drain_complete_lines() == ["2024/05/01 10:00:00.000,Dock,0,E200 3411,-48.0", "next,1"]
    assert framer.text == "half"

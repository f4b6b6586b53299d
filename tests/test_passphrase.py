import pytest

from zfsinstall.passphrase import PassphraseChannel


def test_read_is_repeatable():
    channel = PassphraseChannel()
    channel.write("abcdefgh")
    assert channel.read() == "abcdefgh"
    assert channel.read() == "abcdefgh"
    assert not channel.is_empty


def test_take_then_restore():
    channel = PassphraseChannel()
    channel.write("abcdefgh")
    secret = channel.take()
    assert not channel.is_set
    channel.write(secret)
    assert channel.read() == "abcdefgh"


def test_unset_and_empty():
    channel = PassphraseChannel()
    assert not channel.is_set
    with pytest.raises(RuntimeError):
        channel.read()

    channel.write("")
    assert channel.is_set
    assert channel.is_empty


def test_secret_is_masked():
    channel = PassphraseChannel()
    channel.write("abcdefgh")
    assert "abcdefgh" not in repr(channel)
    assert "abcdefgh" not in str(channel)
    assert repr(channel) == "PassphraseChannel(set)"

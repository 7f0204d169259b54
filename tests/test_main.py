"""
Entry Point Tests
=================

Boot-time configuration failures exit with code 1 before anything starts.
"""

from webcast_relay import main as entry


class TestMain:
    """Tests for main()."""

    def test_missing_stream_key_exits_1(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("STREAM_KEY", raising=False)
        monkeypatch.delenv("RELAY_CONFIG", raising=False)

        assert entry.main([]) == 1

    def test_missing_config_file_exits_1(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("STREAM_KEY", "k")

        assert entry.main(["--config", "nope.yaml"]) == 1

    def test_runs_until_shutdown(self, monkeypatch, tmp_path):
        """main() hands the loaded settings to the supervisor and exits 0."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("RELAY_CONFIG", raising=False)
        monkeypatch.setenv("STREAM_KEY", "k")
        served = []

        async def fake_serve(settings):
            served.append(settings)

        monkeypatch.setattr(entry, "_serve", fake_serve)

        assert entry.main([]) == 0
        assert served[0].stream.stream_key == "k"

import math
import pytest
from pathlib import Path
from radiocast.domain.errors import IdentifierError
from radiocast.domain.events import DiscoveryFinished, PlaylistsGenerated
from radiocast.infrastructure.file_catalog import FileCatalog
from radiocast.pipeline.playlist_generator import (
    PlaylistGenerator, divide_into_streams, generate_unique_identifier,
)
from conftest import make_audio


@pytest.fixture
def generator(audio_root, playlist_root, event_bus):
    return PlaylistGenerator(playlist_root, FileCatalog(audio_root), max_streams=2, event_bus=event_bus)


def _paths(n):
    return [Path(f"/Rai/RAI1_AAC/2024/03/05/0500_rai1_{i:06d}.aac") for i in range(n)]


@pytest.mark.parametrize("total,max_streams,expected_sizes", [
    (10, 3, [4, 4, 2]),
    (9, 3, [3, 3, 3]),
    (3, 5, [1, 1, 1]),
    (1, 1, [1]),
    (7, 1, [7]),
    (5, 4, [2, 2, 1]),
])
def test_divide_into_streams_sizes(total, max_streams, expected_sizes):
    files = _paths(total)
    streams = divide_into_streams(files, max_streams)

    assert [len(s) for s in streams] == expected_sizes
    assert len(streams) == math.ceil(total / math.ceil(total / max_streams))
    # Contiguous slices preserving order
    assert [f for s in streams for f in s] == files

def test_divide_into_streams_empty():
    assert divide_into_streams([], 3) == []

def test_divide_into_streams_rejects_non_positive():
    with pytest.raises(ValueError):
        divide_into_streams(_paths(2), 0)

def test_generate_unique_identifier():
    files = [Path("/data/Rai/RAI1_AAC/2024/03/05/0500_rai1_050000.aac"),
             Path("/data/Rai/RAI1_AAC/2024/03/05/0600_rai1_060000.aac")]

    assert generate_unique_identifier(files) == "RAI1_AAC_2024_03_05_05"
    assert generate_unique_identifier(files[1]) == "RAI1_AAC_2024_03_05_06"

def test_generate_unique_identifier_errors():
    with pytest.raises(ValueError):
        generate_unique_identifier([])
    with pytest.raises(IdentifierError):
        generate_unique_identifier(Path("/data/Other/RAI1_AAC/2024/03/05/0500_x_050000.aac"))

def test_generator_creates_directories(generator, playlist_root):
    assert playlist_root.is_dir()
    assert (playlist_root / "AlreadyStreamed").is_dir()

def test_playlist_format(generator, playlist_root, rai1_day):
    accepted = generator.generate_playlists([rai1_day])

    assert accepted == [rai1_day]
    playlist = playlist_root / "RAI1_AAC_2024_03_05_05.m3u8"
    lines = playlist.read_text().splitlines()
    assert lines[:4] == ["#EXTM3U", "#EXT-X-VERSION:3", "#EXT-X-MEDIA-SEQUENCE:0", "#EXT-X-ALLOW-CACHE:YES"]
    assert lines[4:] == [
        "#EXTINF:7200,", str(rai1_day[0]),
        "#EXTINF:7200,", str(rai1_day[1]),
        "#EXTINF:7200,", str(rai1_day[2]),
    ]

def test_generate_playlists_overwrites_existing(generator, playlist_root, rai1_day):
    generator.generate_playlists([rai1_day])
    generator.generate_playlists([rai1_day[:1]])

    lines = (playlist_root / "RAI1_AAC_2024_03_05_05.m3u8").read_text().splitlines()
    assert lines.count("#EXTINF:7200,") == 1

def test_generate_playlists_skips_archived_and_empty(generator, playlist_root, rai1_day, audio_root, event_bus):
    other = [make_audio(audio_root, "RAI2_WMA", "2024", "03", "05", "0700_rai2_070000.wma")]
    (playlist_root / "AlreadyStreamed" / "RAI1_AAC_2024_03_05_05.m3u8").write_text("#EXTM3U\n")
    events = []
    event_bus.subscribe(PlaylistsGenerated, events.append)

    accepted = generator.generate_playlists([rai1_day, [], other])

    assert accepted == [other]
    assert not (playlist_root / "RAI1_AAC_2024_03_05_05.m3u8").exists()
    assert (playlist_root / "RAI2_WMA_2024_03_05_07.m3u8").exists()
    assert events[0].identifiers == ["RAI2_WMA_2024_03_05_07"]
    assert events[0].skipped == ["RAI1_AAC_2024_03_05_05"]

def test_load_and_sort_drops_already_streamed(generator, playlist_root, rai1_day, audio_root, event_bus):
    later = make_audio(audio_root, "RAI1_AAC", "2024", "03", "05", "0600_rai1_060000.aac")
    (playlist_root / "AlreadyStreamed" / "RAI1_AAC_2024_03_05_05.m3u8").write_text("#EXTM3U\n")
    events = []
    event_bus.subscribe(DiscoveryFinished, events.append)

    files = generator.load_and_sort()

    assert files == [later]
    assert events[0].files_found == 4
    assert events[0].files_to_stream == 1
    assert events[0].already_streamed == 3

def test_load_and_sort_empty_archive(generator, event_bus):
    events = []
    event_bus.subscribe(DiscoveryFinished, events.append)

    assert generator.load_and_sort() == []
    assert events[0].files_to_stream == 0

def test_load_and_sort_reports_invalid_files(generator, rai1_day, audio_root, event_bus):
    bad = make_audio(audio_root, "RAI1_AAC", "2024", "03", "05", "cover.jpg")
    events = []
    event_bus.subscribe(DiscoveryFinished, events.append)

    generator.load_and_sort()

    assert events[0].invalid_files == [bad]

def test_archive_playlist(generator, playlist_root, rai1_day):
    generator.generate_playlists([rai1_day])

    archived = generator.archive_playlist("RAI1_AAC_2024_03_05_05")

    assert archived == playlist_root / "AlreadyStreamed" / "RAI1_AAC_2024_03_05_05.m3u8"
    assert archived.exists()
    assert not (playlist_root / "RAI1_AAC_2024_03_05_05.m3u8").exists()
    assert generator.is_already_streamed("RAI1_AAC_2024_03_05_05")

def test_archive_missing_playlist(generator):
    assert generator.archive_playlist("RAI1_AAC_2024_03_05_05") is None

def test_get_playlists(generator, playlist_root, rai1_day, audio_root):
    other = [make_audio(audio_root, "RAI2_WMA", "2024", "03", "05", "0700_rai2_070000.wma")]
    generator.generate_playlists([other, rai1_day])

    assert [p.name for p in generator.get_playlists()] == [
        "RAI1_AAC_2024_03_05_05.m3u8",
        "RAI2_WMA_2024_03_05_07.m3u8",
    ]

def test_divide_uses_configured_max_streams(generator):
    assert len(generator.divide_into_streams(_paths(5))) == 2
    assert len(generator.divide_into_streams(_paths(5), max_streams=5)) == 5

def test_divide_honours_explicit_zero(generator):
    with pytest.raises(ValueError):
        generator.divide_into_streams(_paths(3), max_streams=0)

def test_shared_identifier_gets_one_combined_playlist(generator, playlist_root, rai1_day, event_bus):
    events = []
    event_bus.subscribe(PlaylistsGenerated, events.append)

    accepted = generator.generate_playlists([rai1_day[:2], rai1_day[2:]])

    assert accepted == [rai1_day[:2], rai1_day[2:]]
    assert generator.get_playlists() == [playlist_root / "RAI1_AAC_2024_03_05_05.m3u8"]
    lines = generator.get_playlists()[0].read_text().splitlines()
    assert [line for line in lines if not line.startswith("#")] == [str(f) for f in rai1_day]
    assert events[0].identifiers == ["RAI1_AAC_2024_03_05_05"]

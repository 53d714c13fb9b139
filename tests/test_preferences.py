import pytest

from utils.favorites import FavoritesManager
from utils.preferences import EffectPreferences, VolumePreferences


def song(song_id: str) -> dict:
    return {"id": song_id, "title": f"Song {song_id}", "url": f"https://youtu.be/{song_id}", "duration": 200}


# --- Volume ---

async def test_volume_defaults_until_set(database):
    prefs = VolumePreferences(database, default_volume=50)

    assert await prefs.get_volume(1) == 50
    assert await prefs.set_volume(1, 80) is True
    assert await prefs.get_volume(1) == 80
    # A fresh instance reads it back from the database
    assert await VolumePreferences(database).get_volume(1) == 80


@pytest.mark.parametrize("volume", [-1, 101, 150])
async def test_volume_out_of_range_is_rejected(database, volume):
    prefs = VolumePreferences(database)
    assert await prefs.set_volume(1, volume) is False
    assert await prefs.get_volume(1) == 50


async def test_volume_reset(database):
    prefs = VolumePreferences(database, default_volume=40)
    await prefs.set_volume(1, 90)

    assert await prefs.reset_volume(1) is True
    assert await prefs.get_volume(1) == 40
    assert await prefs.reset_volume(1) is False


async def test_volume_stats(database):
    prefs = VolumePreferences(database)
    assert (await prefs.get_stats())["total_users"] == 0

    await prefs.set_volume(1, 20)
    await prefs.set_volume(2, 60)
    await prefs.set_volume(3, 100)

    assert await prefs.get_stats() == {
        "total_users": 3,
        "average_volume": 60,
        "min_volume": 20,
        "max_volume": 100,
    }


async def test_volume_cleanup_keeps_recent_preferences(database):
    prefs = VolumePreferences(database)
    await prefs.set_volume(1, 70)
    assert await prefs.cleanup_old(days=90) == 0
    assert await prefs.get_volume(1) == 70


# --- Effects ---

async def test_effect_preference(database):
    prefs = EffectPreferences(database)
    assert await prefs.get_effect(1) is None

    await prefs.set_effect(1, "bassboost")
    assert await prefs.get_effect(1) == "bassboost"
    assert await EffectPreferences(database).get_effect(1) == "bassboost"

    assert await prefs.clear_effect(1) is True
    assert await prefs.get_effect(1) is None


# --- Favorites ---

@pytest.fixture
def favorites(database):
    return FavoritesManager(database, max_playlists=2, max_songs_per_playlist=2)


async def test_favorites(favorites):
    assert await favorites.add_favorite(1, song("a")) == (True, None)
    assert await favorites.add_favorite(1, song("a")) == (False, "Already in favorites")
    await favorites.add_favorite(1, song("b"))

    assert [s["id"] for s in await favorites.get_favorites(1)] == ["a", "b"]
    assert await favorites.get_favorites(2) == []

    assert await favorites.remove_favorite(1, "a") == (True, None)
    assert await favorites.remove_favorite(1, "a") == (False, "Song not in favorites")


async def test_playlist_creation_rules(favorites):
    assert await favorites.create_playlist(1, "  ") == (False, "Playlist name cannot be empty")
    assert await favorites.create_playlist(1, "Road trip") == (True, None)
    assert await favorites.create_playlist(1, "Road trip") == (False, "Playlist already exists")
    assert await favorites.create_playlist(1, "Gym") == (True, None)
    assert await favorites.create_playlist(1, "Third") == (False, "Maximum 2 playlists allowed")
    # Limits are per user
    assert await favorites.create_playlist(2, "Road trip") == (True, None)


async def test_playlist_songs(favorites):
    await favorites.create_playlist(1, "Mix")

    assert await favorites.add_to_playlist(1, "Mix", song("a")) == (True, None)
    assert await favorites.add_to_playlist(1, "Mix", song("a")) == (False, "Song already in playlist")
    assert await favorites.add_to_playlist(1, "Mix", song("b")) == (True, None)
    assert await favorites.add_to_playlist(1, "Mix", song("c")) == (False, "Maximum 2 songs per playlist")
    assert await favorites.add_to_playlist(1, "Nope", song("c")) == (False, "Playlist not found")

    playlist = await favorites.get_playlist(1, "Mix")
    assert [s["id"] for s in playlist["songs"]] == ["a", "b"]

    assert await favorites.remove_from_playlist(1, "Mix", "a") == (True, None)
    assert await favorites.remove_from_playlist(1, "Mix", "a") == (False, "Song not in playlist")

    playlists = await favorites.get_playlists(1)
    assert [(p["name"], p["song_count"]) for p in playlists] == [("Mix", 1)]


async def test_rename_and_delete_playlist(favorites):
    await favorites.create_playlist(1, "Old")
    await favorites.create_playlist(1, "Other")
    await favorites.add_to_playlist(1, "Old", song("a"))

    assert await favorites.rename_playlist(1, "Old", "Other") == (False, "New name already exists")
    assert await favorites.rename_playlist(1, "Missing", "New") == (False, "Playlist not found")
    assert await favorites.rename_playlist(1, "Old", "New") == (True, None)
    assert (await favorites.get_playlist(1, "New"))["songs"][0]["id"] == "a"

    assert await favorites.delete_playlist(1, "New") == (True, None)
    assert await favorites.delete_playlist(1, "New") == (False, "Playlist not found")


async def test_favorites_stats(favorites):
    await favorites.add_favorite(1, song("a"))
    await favorites.create_playlist(2, "Mix")
    await favorites.add_to_playlist(2, "Mix", song("a"))

    assert await favorites.get_stats() == {
        "total_favorites": 1,
        "total_playlists": 1,
        "total_songs": 1,
        "total_users": 2,
    }

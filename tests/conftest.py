import pytest
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Hypothesis configuration for property-based testing
from hypothesis import settings
from tests.helpers.scripted import ScriptedTransport, make_track, response_json

# Register Hypothesis profiles
settings.register_profile("fast", max_examples=50, deadline=None)
settings.register_profile("thorough", max_examples=1000, deadline=None)
settings.load_profile("fast")  # Default to fast profile


def pytest_collection_modifyitems(items):
    """Automatically order tests: unit tests first, then property tests, then E2E tests.

    Individual tests marked with @pytest.mark.order("last") will run at the very end.
    """
    for item in items:
        # Skip if item already has explicit order marker
        if hasattr(item, 'get_closest_marker') and item.get_closest_marker('order'):
            continue

        # Assign order based on test file name
        test_file = str(item.fspath)
        if 'test_unit_' in test_file:
            item.add_marker(pytest.mark.order(1))
        elif 'test_props_' in test_file:
            item.add_marker(pytest.mark.order(2))
        elif 'test_e2e_' in test_file:
            item.add_marker(pytest.mark.order(3))


@pytest.fixture
def three_tracks():
    """Three candidates for an ambiguous artist search, in server order."""
    return [
        make_track(path='/music/bob/a.flac', title='First Song'),
        make_track(path='/music/bob/b.flac', title='Second Song', album_artist=''),
        make_track(path='/music/bob/c.flac', title='Third Song', album='Other Album'),
    ]


@pytest.fixture
def multiple_results_transport(three_tracks):
    """Transport whose server answers with three candidates."""
    return ScriptedTransport([response_json('Multiple results found: 3', three_tracks)])


@pytest.fixture
def single_result_transport():
    """Transport whose server answers with a single resolved track."""
    return ScriptedTransport([response_json('Found: Rocker Song', [make_track()])])

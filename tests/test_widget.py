import asyncio

import pytest
from shapely.geometry import Point

from core.layer_processor import EMPTY_MESSAGE, NO_BUFFER_MESSAGE, NO_LAYERS_MESSAGE
from core.map_context import MapContext, MapLayer
from core.models import BufferSpecError, BufferUnit, StatusKind
from core.sketch_controller import SketchState
from core.widget import NO_MAP_MESSAGE, BufferIntersectWidget

from conftest import PARCELS_URL, WELLS_URL, features, unreachable

VERMONT = Point(-72.58, 44.26)


@pytest.fixture
def two_layer_map():
    return MapContext([
        MapLayer('wells', 'feature', title='Wells', url=WELLS_URL),
        MapLayer('parcels', 'feature', title='Parcels', url=PARCELS_URL),
    ], wkid=4326, title='Test map')


@pytest.fixture
def widget(server, two_layer_map):
    widget = BufferIntersectWidget({'buffer': {'default_distance': 100, 'default_unit': 'meters'}},
                                   client=server.client())
    widget.bind_map_context(two_layer_map)
    return widget


def draw_point(widget, point=VERMONT):
    widget.start_draw('point')
    widget.map_context.sketch.complete(point)


def test_scenario_point_buffer_with_one_matching_layer(widget, server):
    server.route(WELLS_URL, lambda p: features({'ID': 1}, {'ID': 2}, {'ID': 3}))
    server.route(PARCELS_URL, lambda p: {'features': []})

    draw_point(widget)
    status = asyncio.run(widget.run_intersection())

    report = widget.report
    assert [(s.layer_title, s.feature_count) for s in report.successes] == [('Wells', 3)]
    assert report.failures == ()
    assert not report.is_empty
    assert status.kind is StatusKind.SUCCESS
    assert widget.status == status


def test_scenario_no_buffer_drawn(widget, server):
    status = asyncio.run(widget.run_intersection())

    assert status.kind is StatusKind.VALIDATION
    assert status.text == NO_BUFFER_MESSAGE
    assert widget.report is None
    assert server.requests == []


def test_scenario_unreachable_endpoint(widget, server):
    server.route(WELLS_URL, unreachable)
    widget.toggle_layer('parcels')

    draw_point(widget)
    status = asyncio.run(widget.run_intersection())

    report = widget.report
    assert report.successes == ()
    assert [(f.layer_title, f.reason) for f in report.failures] == [('Wells', 'query failed')]
    assert status.kind is StatusKind.FAILURE
    assert 'Wells' in status.text


def test_scenario_nothing_found_anywhere(widget, server):
    server.route(WELLS_URL, lambda p: {'features': []})
    server.route(PARCELS_URL, lambda p: {'features': []})

    draw_point(widget)
    status = asyncio.run(widget.run_intersection())

    assert widget.report.is_empty
    assert widget.report.successes == () and widget.report.failures == ()
    assert status.kind is StatusKind.EMPTY
    assert status.text == EMPTY_MESSAGE


def test_empty_selection_is_a_validation_failure(widget, server):
    widget.toggle_layer('wells')
    widget.toggle_layer('parcels')
    draw_point(widget)

    status = asyncio.run(widget.run_intersection())

    assert status.text == NO_LAYERS_MESSAGE
    assert server.requests == []


def test_defaults_select_every_layer(widget):
    assert widget.selected_layer_ids == ('wells', 'parcels')
    assert [layer.title for layer in widget.available_layers] == ['Wells', 'Parcels']


def test_buffer_spec_edited_mid_draw_applies(widget):
    widget.start_draw('point')
    widget.set_buffer_distance(2)
    widget.set_buffer_unit('kilometers')
    widget.map_context.sketch.complete(VERMONT)

    assert widget.has_buffer
    assert widget._controller.buffer.spec.unit is BufferUnit.KILOMETERS


def test_invalid_buffer_settings_are_rejected(widget):
    with pytest.raises(BufferSpecError):
        widget.set_buffer_distance(-5)
    with pytest.raises(BufferSpecError):
        widget.set_buffer_unit('leagues')
    assert widget.buffer_spec.distance == 100


def test_new_draw_resets_report_and_status(widget, server):
    server.route(WELLS_URL, lambda p: {'features': []})
    server.route(PARCELS_URL, lambda p: {'features': []})
    draw_point(widget)
    asyncio.run(widget.run_intersection())

    widget.start_draw('polygon')

    assert widget.report is None
    assert widget.status is None
    assert not widget.has_buffer
    assert widget.sketch_state is SketchState.DRAWING


def test_clear_twice_equals_clear_once(widget):
    draw_point(widget)
    widget.clear()
    first = (widget.sketch_state, widget.has_buffer, widget.report, widget.status)
    widget.clear()

    assert (widget.sketch_state, widget.has_buffer, widget.report, widget.status) == first
    assert first == (SketchState.IDLE, False, None, None)
    assert len(widget.map_context.display) == 0


def test_report_of_run_overtaken_by_new_buffer_is_discarded(widget, server):
    async def slow(params):
        await asyncio.sleep(0.1)
        return features({'ID': 1})

    server.route(WELLS_URL, slow)
    server.route(PARCELS_URL, slow)
    draw_point(widget)

    async def go():
        task = asyncio.create_task(widget.run_intersection())
        await asyncio.sleep(0.02)
        draw_point(widget, Point(-72.0, 44.0))
        return await task

    asyncio.run(go())

    assert widget.has_buffer
    assert widget.report is None
    assert widget.status is None


def test_latest_run_wins_over_slower_earlier_run(widget, server):
    calls = []

    async def handler(params):
        calls.append(params)
        if len(calls) == 1:
            await asyncio.sleep(0.1)
            return features({'ID': 1})
        return features({'ID': 1}, {'ID': 2})

    server.route(WELLS_URL, handler)
    widget.toggle_layer('parcels')
    draw_point(widget)

    async def go():
        first = asyncio.create_task(widget.run_intersection())
        await asyncio.sleep(0.02)
        await widget.run_intersection()
        await first

    asyncio.run(go())

    assert widget.report.total_features == 2


def test_rebind_rebuilds_registry_and_drops_buffer(widget, two_layer_map):
    draw_point(widget)
    other = MapContext([MapLayer('springs', 'feature', title='Springs',
                                 url='https://services.example.com/Springs/FeatureServer/0')])

    widget.bind_map_context(other)

    assert [layer.id for layer in widget.available_layers] == ['springs']
    assert widget.selected_layer_ids == ('springs',)
    assert not widget.has_buffer
    assert len(two_layer_map.display) == 0

    # The old map's drawing surface no longer drives the widget
    two_layer_map.sketch.create('point')
    two_layer_map.sketch.complete(VERMONT)
    assert not widget.has_buffer


def test_unbound_widget_reports_missing_map():
    widget = BufferIntersectWidget()

    assert widget.start_draw('point') is None
    status = asyncio.run(widget.run_intersection())

    assert status.kind is StatusKind.VALIDATION
    assert status.text == NO_MAP_MESSAGE
    assert widget.available_layers == ()


def test_toggle_unknown_layer_is_ignored(widget):
    assert widget.toggle_layer('ghost') is False
    assert widget.selected_layer_ids == ('wells', 'parcels')


def test_report_of_run_overtaken_by_rebind_is_discarded(widget, server):
    async def slow(params):
        await asyncio.sleep(0.1)
        return features({'ID': 1})

    server.route(WELLS_URL, slow)
    server.route(PARCELS_URL, slow)
    draw_point(widget)
    other = MapContext([MapLayer('springs', 'feature', title='Springs',
                                 url='https://services.example.com/Springs/FeatureServer/0')])

    async def go():
        task = asyncio.create_task(widget.run_intersection())
        await asyncio.sleep(0.02)
        widget.bind_map_context(other)
        return await task

    asyncio.run(go())

    assert len(server.requests) == 2
    assert widget.map_context is other
    assert widget.report is None
    assert widget.status is None


def test_rejected_draw_keeps_status(widget, server):
    widget.start_draw('point')
    status = asyncio.run(widget.run_intersection())
    assert status.text == NO_BUFFER_MESSAGE

    assert widget.start_draw('polygon') is None

    assert widget.status == status
    assert widget.geometry_kind.value == 'point'
    assert widget.sketch_state is SketchState.DRAWING


def test_select_all_and_none_commands(widget):
    widget.select_no_layers()
    assert widget.selected_layer_ids == ()
    assert not widget.is_layer_selected('wells')

    widget.select_all_layers()
    assert widget.selected_layer_ids == ('wells', 'parcels')
    assert widget.is_layer_selected('parcels')
    assert not widget.is_layer_selected('ghost')

import pytest

from apps.api.metrics import MetricsRegistry, PrometheusExporter, register_default_metrics, track_duration


def test_exporter_renders_counters_and_distributions():
    registry = MetricsRegistry()
    counter = registry.counter("sales_total", description="Sales", label_names=("area",))
    duration = registry.distribution("op_seconds", description="Op time")
    counter.inc(labels={"area": "L"})
    counter.inc(2, labels={"area": "L"})
    duration.observe(0.5)
    duration.observe(1.5)

    payload = PrometheusExporter(registry).build_payload()

    assert "# HELP sales_total Sales" in payload
    assert "# TYPE sales_total counter" in payload
    assert 'sales_total{area="L"} 3.0' in payload
    assert "# TYPE op_seconds summary" in payload
    assert "op_seconds_count 2.0" in payload
    assert "op_seconds_sum 2.0" in payload


def test_empty_metrics_only_emit_headers():
    registry = MetricsRegistry()
    register_default_metrics(registry)

    lines = PrometheusExporter(registry).build_payload().strip().splitlines()

    assert lines
    assert all(line.startswith("# ") for line in lines)


def test_registry_rejects_type_mismatch():
    registry = MetricsRegistry()
    registry.counter("things_total")
    with pytest.raises(TypeError):
        registry.distribution("things_total")


def test_labels_are_validated():
    registry = MetricsRegistry()
    counter = registry.counter("labelled_total", label_names=("operation",))
    with pytest.raises(ValueError):
        counter.inc()
    with pytest.raises(ValueError):
        counter.inc(-1, labels={"operation": "x"})


def test_track_duration_observes_even_on_error():
    registry = MetricsRegistry()
    duration = registry.distribution("block_seconds")
    with pytest.raises(RuntimeError):
        with track_duration(duration):
            raise RuntimeError("boom")
    assert duration.snapshot()[()]["count"] == 1.0


def test_reset_keeps_registrations():
    registry = MetricsRegistry()
    registry.counter("kept_total").inc()
    registry.reset()
    assert registry.counter("kept_total").value() == 0.0
    assert [metric.name for metric in registry.metrics()] == ["kept_total"]

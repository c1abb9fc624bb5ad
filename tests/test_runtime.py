import pytest

from cgraph.cgraph_runtime import (
    ConversionRunner, DEFAULT_CONFIG_PATH, ExecutionResult, PythonScriptBridge, load_config_file, merge_config,
)


@pytest.fixture
def runner():
    return ConversionRunner()


def commands_of(result):
    return [r.command for r in result.value]


def circles(result):
    return [e.attributes for r in result.value for e in r.elements if e.tag == 'circle']


# --- Conversion ---

def test_simple_document(runner):
    result = runner.handle_source("grid\naxis")
    assert result.status == 'success'
    assert commands_of(result) == ['init', 'grid', 'axis']
    assert result.side_effects == []
    assert result.format_error() == ""


def test_empty_document(runner):
    result = runner.handle_source("")
    assert result.status == 'success'
    assert result.value == []


def test_explicit_init_sets_range(runner):
    result = runner.handle_source("init r 0 0 10 5\naxis")
    svg = result.value[0].elements[0]
    assert svg.attributes['viewBox'] == "0 0 10 5"
    assert result.value[1].elements[0].attributes['d'] == "M 0 0 H 10"


def test_for_loop_draws_points(runner):
    result = runner.handle_source(".for {i=0}{i<3}{i=i+1}\npoint p $i 0;;")
    assert [(c['cx'], c['cy']) for c in circles(result)] == [('0', '0'), ('1', '0'), ('2', '0')]


def test_named_point_is_scriptable(runner):
    result = runner.handle_source("point:a p 1 2\npoint p $a.p\npoint p {=a.p.x + 1} =a.p.y")
    assert [(c['cx'], c['cy']) for c in circles(result)] == [('1', '2'), ('1', '2'), ('2', '2')]


def test_init_interface_is_scriptable(runner):
    result = runner.handle_source("init w 10em\npoint p {=len($.init.w)} 0")
    assert circles(result)[0]['cx'] == '4'


def test_repeat_command(runner):
    result = runner.handle_source("point p 1 1 f red\n. p 2 2")
    assert [(c['cx'], c['fill']) for c in circles(result)] == [('1', 'red'), ('2', 'red')]


def test_macro_document(runner):
    result = runner.handle_source("_dot point p $x 0;;\n{x=3}\n@dot\n{x=4}\n@dot")
    assert [c['cx'] for c in circles(result)] == ['3', '4']


def test_script_error_is_reported(runner):
    result = runner.handle_source("point p {=nope} 1 2")
    assert result.status == 'success'
    assert len(result.side_effects) == 1
    assert result.side_effects[0]['message'].startswith("ScriptError: NameError")
    assert (circles(result)[0]['cx'], circles(result)[0]['cy']) == ('1', '2')


def test_state_does_not_leak_between_documents(runner):
    runner.handle_source("{x=5}\npoint p {=1/0} 0")
    result = runner.handle_source("point p =x 1")
    # `x` is gone, so `p` gets one value and is dropped.
    assert len(result.side_effects) == 1
    assert "NameError" in result.side_effects[0]['message']
    assert (circles(result)[0]['cx'], circles(result)[0]['cy']) == ('0', '0')


def test_infinite_range_falls_back_to_graph_range(runner):
    result = runner.handle_source("grid r 0 0 inf 10")
    assert result.status == 'success'
    d = result.value[1].elements[0].attributes['d']
    assert d.startswith("M -100 -100 V 100")


def test_nan_range_falls_back_to_default(runner):
    result = runner.handle_source("init r nan 0 10 10\ngrid")
    assert result.status == 'success'
    assert result.value[0].elements[0].attributes['viewBox'] == "0 0 200 200"
    assert commands_of(result) == ['init', 'grid']


def test_doubly_recursive_macro_finishes(runner):
    result = runner.handle_source("_m\ngrid\n@m\n@m;;\n@m")
    assert result.status == 'success'
    assert commands_of(result).count('grid') == runner.options['max_expansions']


def test_block_indented_after_first_line(runner):
    result = runner.handle_source("{a = 1\n  b = 2}\npoint p {=a + b} 0")
    assert result.side_effects == []
    assert circles(result)[0]['cx'] == '3'


class ExplodingBridge(PythonScriptBridge):
    def evaluate(self, code):
        raise RuntimeError("boom")


def test_internal_error_becomes_error_result():
    runner = ConversionRunner(bridge=ExplodingBridge())
    result = runner.handle_source("grid {x}")
    assert result.status == 'error'
    assert result.value is None
    assert result.format_error() == "InternalError: RuntimeError: boom"
    assert result.side_effects[-1]['message'] == "InternalError: RuntimeError: boom"


def test_format_error_default():
    assert ExecutionResult(status='error').format_error() == "Unknown error"


# --- Configuration ---

def test_default_config_loads():
    config = load_config_file(DEFAULT_CONFIG_PATH)
    assert config['options']['max_loop_iterations'] == 100
    assert config['options']['init_command'] == 'init'
    assert set(config['commands']) == {'init', 'grid', 'axis', 'point'}


def test_default_config_is_cached():
    ConversionRunner()
    assert ConversionRunner._default_config is not None
    first = ConversionRunner()
    first.options['max_loop_iterations'] = 1
    assert ConversionRunner().options['max_loop_iterations'] == 100


def test_yaml_config_overrides_options(tmp_path):
    path = tmp_path / "limits.yaml"
    path.write_text("options:\n  max_loop_iterations: 2\n", encoding="utf-8")
    runner = ConversionRunner(config_path=path)
    assert runner.options['max_nesting'] == 64
    result = runner.handle_source(".for {i=0}{True}{i=i+1}\npoint p $i 0;;")
    assert len(circles(result)) == 2


def test_json_config_replaces_command_schema(tmp_path):
    path = tmp_path / "schema.json"
    path.write_text('{"commands": {"point": {"p": {"name": "point", "values": 2}}}}', encoding="utf-8")
    runner = ConversionRunner(config_path=str(path))
    result = runner.handle_source("point p 1 2 f red\ngrid")
    assert circles(result)[0]['fill'] == '#000'
    assert commands_of(result) == ['init', 'point', 'grid']


def test_toml_config(tmp_path):
    path = tmp_path / "style.toml"
    path.write_text('[options]\nid_prefix = "fig"\n\n[commands.circle]\nr = {values = 1}\n', encoding="utf-8")
    runner = ConversionRunner(config_path=path)
    result = runner.handle_source("axis\ncircle r 3")
    assert commands_of(result) == ['init', 'axis']
    assert result.value[1].elements[0].attributes['marker-end'].startswith("url(#fig_id_")


def test_empty_config_file(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config_file(path) == {}
    assert commands_of(ConversionRunner(config_path=path).handle_source("grid")) == ['init', 'grid']


@pytest.mark.parametrize("name, content", [
    ("config.ini", "[options]\n"),
    ("list.yaml", "- a\n- b\n"),
    ("options.yaml", "options: 3\n"),
    ("commands.json", '{"commands": []}'),
    ("broken.json", '{"options": '),
])
def test_bad_config_raises(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ValueError):
        ConversionRunner(config_path=path)


def test_missing_config_raises(tmp_path):
    with pytest.raises(OSError):
        ConversionRunner(config_path=tmp_path / "missing.yaml")


def test_merge_config_does_not_mutate_base():
    base = {'options': {'a': 1, 'b': 2}, 'commands': {'x': {'f': {}}, 'y': {'g': {}}}}
    merged = merge_config(base, {'options': {'b': 3}, 'commands': {'x': {'h': {}}}})
    assert merged == {'options': {'a': 1, 'b': 3}, 'commands': {'x': {'h': {}}, 'y': {'g': {}}}}
    assert base['options']['b'] == 2
    assert base['commands']['x'] == {'f': {}}

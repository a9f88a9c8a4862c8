"""Unit tests validating the in-process interpreter behaviour and errors."""

import pytest

from backend.pyplay.errors import EvalError
from backend.pyplay.interpreter import Interpreter


def run(code):
    return Interpreter().execute(code)


def test_precedence():
    assert run("print(1+2*3)") == ["7"]


def test_filtered_comprehension():
    assert run("print([x*x for x in range(5) if x%2==0])") == ["[0, 4, 16]"]


def test_negative_slice():
    assert run("a=[1,2,3,4,5]\nprint(a[-2:])") == ["[4, 5]"]


def test_fstring_precision():
    assert run("value=3.14159\nprint(f'{value:.2f}')") == ["3.14"]


def test_infinite_while_is_cut_off_once_and_outer_code_runs():
    it = Interpreter()
    it.max_iterations = 100
    code = (
        "count = 0\n"
        "while True:\n"
        "    count += 1\n"
        "print(count)\n"
    )
    out = it.execute(code)
    assert out == ["⚠️ Infinite loop detected", "100"]


def test_function_scope_isolation():
    code = (
        "x = 10\n"
        "def change(x):\n"
        "    x = 99\n"
        "    return x\n"
        "def shadow():\n"
        "    x = 5\n"
        "r = change(x)\n"
        "shadow()\n"
        "print(x, r)\n"
    )
    assert run(code) == ["10 99"]


def test_sorted_does_not_mutate():
    code = "a = [3, 1, 2]\nb = sorted(a, reverse=True)\nprint(b)\nprint(a)"
    assert run(code) == ["[3, 2, 1]", "[3, 1, 2]"]


def test_if_chain_runs_exactly_one_branch():
    code = (
        "n = 5\n"
        "if n > 10:\n"
        "    print('big')\n"
        "elif n > 3:\n"
        "    print('medium')\n"
        "elif n > 1:\n"
        "    print('small')\n"
        "else:\n"
        "    print('tiny')\n"
        "print('done')\n"
    )
    assert run(code) == ["medium", "done"]


def test_else_branch_and_nested_blocks():
    code = (
        "for n in [1, 2, 3]:\n"
        "    if n % 2 == 0:\n"
        "        print(n, 'even')\n"
        "    else:\n"
        "        print(n, 'odd')\n"
    )
    assert run(code) == ["1 odd", "2 even", "3 odd"]


def test_blank_and_comment_lines_do_not_end_blocks():
    code = (
        "for i in range(2):\n"
        "    print('a', i)\n"
        "\n"
        "# a comment at column zero\n"
        "    print('b', i)\n"
        "print('end')\n"
    )
    assert run(code) == ["a 0", "b 0", "a 1", "b 1", "end"]


def test_for_destructures_pairs():
    code = "for i, v in enumerate(['a', 'b'], 1):\n    print(i, v)"
    assert run(code) == ["1 a", "2 b"]


def test_for_tuple_target_with_scalar_items_binds_first_name():
    code = "for a, b in [1, 2]:\n    print(a, b)"
    assert run(code) == ["1 None", "2 None"]


def test_for_over_string_and_dict():
    code = "for ch in 'ab':\n    print(ch)\nfor k in {'x': 1, 'y': 2}:\n    print(k)"
    assert run(code) == ["a", "b", "x", "y"]


def test_for_over_unset_name_or_scalar_runs_no_iterations():
    code = (
        "for x in missing:\n"
        "    print(x)\n"
        "for d in 42:\n"
        "    print(d)\n"
        "else:\n"
        "    print('empty')\n"
        "print('after')"
    )
    assert run(code) == ["empty", "after"]


def test_swap_and_unpack():
    assert run("a, b = 1, 2\na, b = b, a\nprint(a, b)") == ["2 1"]


def test_unpack_of_scalar_leaves_targets_untouched():
    assert run("a, b = 1, 2\na, b = 5\nprint(a, b)") == ["1 2"]


def test_compound_assignment_on_unset_name_starts_at_zero():
    assert run("total += 5\ntotal *= 3\nprint(total)") == ["15"]


def test_subscript_targets():
    code = (
        "d = {}\n"
        "d['n'] = 1\n"
        "d['n'] += 4\n"
        "xs = [0, 0]\n"
        "xs[-1] = 7\n"
        "print(d, xs)\n"
    )
    assert run(code) == ["{'n': 5} [0, 7]"]


def test_chained_assignment():
    assert run("a = b = 3\nprint(a + b)") == ["6"]


def test_semicolon_separated_statements():
    assert run("a = 1; b = 2; print(a + b)") == ["3"]


def test_one_line_if_else():
    code = "x = 3\nif x > 2: print('big')\nelse: print('small')"
    assert run(code) == ["big"]


def test_print_end_keeps_line_open():
    code = "print('a', end='')\nprint('b')\nprint(1, 2, 3, sep='-')"
    assert run(code) == ["ab", "1-2-3"]


def test_empty_print_emits_blank_line():
    assert run("print('x')\nprint()\nprint('y')") == ["x", "", "y"]


def test_embedded_newlines_split_lines():
    assert run("print('a\\nb')") == ["a", "b"]


def test_defaults_keywords_and_return():
    code = (
        "def greet(name, greeting='Hello'):\n"
        "    return greeting + ', ' + name + '!'\n"
        "print(greet('Ada'))\n"
        "print(greet('Bob', greeting='Hi'))\n"
    )
    assert run(code) == ["Hello, Ada!", "Hi, Bob!"]


def test_recursion():
    code = (
        "def fact(n):\n"
        "    if n <= 1:\n"
        "        return 1\n"
        "    return n * fact(n - 1)\n"
        "print(fact(10))\n"
    )
    assert run(code) == ["3628800"]


def test_return_slot_assignment_does_not_end_body():
    code = (
        "def f():\n"
        "    __return__ = 7\n"
        "    print('still running')\n"
        "print(f())\n"
    )
    assert run(code) == ["still running", "7"]


def test_star_args():
    code = (
        "def total(*nums, **opts):\n"
        "    return sum(nums) * opts.get('scale', 1)\n"
        "print(total(1, 2, 3, scale=2))\n"
    )
    assert run(code) == ["12"]


def test_function_reads_defining_frame_not_caller():
    code = (
        "rate = 2\n"
        "def scale(v):\n"
        "    return v * rate\n"
        "def inner():\n"
        "    return secret\n"
        "def outer():\n"
        "    secret = 1\n"
        "    return inner()\n"
        "print(scale(4), outer())\n"
    )
    assert run(code) == ["8 None"]


def test_shared_list_mutation_is_visible():
    code = "def add(xs):\n    xs.append(1)\nitems = []\nadd(items)\nprint(items)"
    assert run(code) == ["[1]"]


def test_break_and_continue():
    code = (
        "for i in range(10):\n"
        "    if i == 2:\n"
        "        continue\n"
        "    if i == 4:\n"
        "        break\n"
        "    print(i)\n"
    )
    assert run(code) == ["0", "1", "3"]


def test_loop_else_runs_without_break():
    code = (
        "for i in range(2):\n"
        "    pass\n"
        "else:\n"
        "    print('done')\n"
        "while False:\n"
        "    pass\n"
        "else:\n"
        "    print('also done')\n"
    )
    assert run(code) == ["done", "also done"]


def test_unparseable_lines_are_skipped():
    assert run("print(1)\nthis is not python\nprint(2)") == ["1", "2"]


def test_unsupported_expression_evaluates_to_its_text():
    assert run("f = lambda x: x\nprint(f)") == ["lambda x: x"]


def test_orphan_else_and_unsupported_headers_run_their_lines():
    code = "else:\n    print('runs')\nclass A:\n    x = 1\nprint(x)"
    assert run(code) == ["runs", "1"]


def test_comprehension_variable_does_not_leak():
    assert run("[i for i in range(3)]\nprint(i)") == ["None"]


def test_top_level_return_ends_program():
    assert run("print(1)\nreturn\nprint(2)") == ["1"]


def test_runtime_error_carries_line_and_partial_output():
    with pytest.raises(EvalError) as exc:
        run("print('before')\nx = 1 / 0\nprint('after')")
    assert str(exc.value) == "division by zero"
    assert exc.value.line == 2
    assert exc.value.output == ["before"]


def test_error_inside_function_points_at_body_line():
    code = "def f():\n    return 'a' - 1\nf()"
    with pytest.raises(EvalError) as exc:
        run(code)
    assert exc.value.line == 2
    assert "unsupported operand" in str(exc.value)


def test_run_result_shape():
    res = Interpreter().run("print(1)\nprint(1/0)")
    assert res["output"] == ["1"]
    assert res["errors"] == {"code": "RUNTIME_ERROR", "message": "division by zero", "line": 2}
    assert set(res["stats"]) == {"iterations", "calls", "output_lines"}


def test_run_success_stats():
    res = Interpreter().run("def f():\n    pass\nfor i in range(3):\n    f()")
    assert res["errors"] is None
    assert res["output"] == []
    assert res["stats"]["iterations"] == 3
    assert res["stats"]["calls"] == 3


def test_input_queue():
    res = Interpreter().run("name = input('Name? ')\nprint('Hi ' + name)\nprint(input() == '')", inputs=["Ada"])
    assert res["output"] == ["Hi Ada", "True"]


def test_input_func():
    prompts = []

    def answer(prompt):
        prompts.append(prompt)
        return "42"

    it = Interpreter(input_func=answer)
    assert it.execute("n = int(input('n: '))\nprint(n + 1)") == ["43"]
    assert prompts == ["n: "]


def test_sessions_do_not_share_state():
    it = Interpreter()
    it.execute("x = 1\ndef f():\n    return 2")
    assert it.execute("print(x, f())") == ["None None"]

import sys

from invoke import run, task


class g:
    test_success = False


@task
def test(ctx, all=False):
    test_cmd = [
        "pytest",  # Test command
        "--cov-report term-missing",  # Print only uncovered lines to stdout
        "--cov bodyparser",  # Test only this package
        "--timeout=30",  # Each test should timeout after 30 sec
    ]

    # Test in this directory
    test_cmd.append("tests")

    res = run(" ".join(test_cmd), pty=False)
    g.test_success = res.ok


@task(pre=[test])
def fuzz(ctx, target="body", runs=100000):
    if not g.test_success:
        print("Tests must pass before fuzzing!", file=sys.stderr)
        return

    run(f"python fuzz/fuzz_{target}.py -runs={runs}", pty=False)

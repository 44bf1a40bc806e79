import asyncio
import os
import sys
from pathlib import Path

from clyde.clyde_datatypes import ClydeError
from clyde.clyde_model import load_model
from clyde.clyde_runtime import QueryRunner, VERSION

USAGE = "usage: clyde MODEL [SCRIPT]   (or set CLYDE_MODEL)"


# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)


def emit(result):
    """Carries out the side effects of one input line."""
    for effect in result.side_effects:
        topics = effect.get('topics')
        if topics == ['stdout']:
            print(effect.get('message', ''))
        elif topics == ['file']:
            target = Path(effect['path'])
            try:
                target.write_text(effect.get('message', '') + "\n", encoding="utf-8")
            except OSError as e:
                print(f"Error: cannot write {target}: {e}", file=sys.stderr)


async def run_script_file(runner: QueryRunner, file_path: str) -> int:
    """Run a Clyde script file line by line; the first failing line stops it."""
    p = Path(file_path)
    try:
        source = p.read_text(encoding="utf-8")
    except OSError as e:
        print(f"Error: cannot read {file_path}: {e}", file=sys.stderr)
        return 1
    for line in source.splitlines():
        if not line.strip():
            continue
        result = await runner.handle_script(line)
        emit(result)
        if result.status == 'error':
            print(result.format_error(), file=sys.stderr)
            return 1
        if result.exit_code is not None:
            return result.exit_code
    return 0


async def main(argv=None) -> int:
    """Run a script file when provided, otherwise start the interactive REPL."""
    args = list(sys.argv[1:] if argv is None else argv)
    model_path = args.pop(0) if args else os.environ.get("CLYDE_MODEL")
    if not model_path:
        print(USAGE, file=sys.stderr)
        return 1
    try:
        model = load_model(model_path)
    except ClydeError as e:
        print(e, file=sys.stderr)
        return 1

    runner = QueryRunner(model)
    if args:
        return await run_script_file(runner, args[0])

    print(f"Clyde {VERSION}")
    print("Type ^help for help, ^exit or press Ctrl+D to quit.")

    # REPL Loop
    while True:
        try:
            raw = await ainput(runner.prompt)
            if raw == "":
                raise EOFError
            line = raw.strip()
            if not line:
                continue

            result = await runner.handle_script(line)
            emit(result)
            if result.status == 'error':
                print(result.format_error(), file=sys.stderr)
                continue
            if result.exit_code is not None:
                return result.exit_code

        except EOFError:
            print()
            return 0


def run():
    try:
        raise SystemExit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nExiting.")


if __name__ == "__main__":
    run()

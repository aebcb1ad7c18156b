"""Dev server launcher for the evidence service."""


def main() -> None:
    from workproof.main import run

    run()


if __name__ == "__main__":
    main()

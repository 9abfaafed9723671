"""Run the tile proxy with ``python -m tile_proxy``."""

from tile_proxy import main

if __name__ == "__main__":
    main.run()

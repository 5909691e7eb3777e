import argparse
import logging
import sys

from PyQt6.QtWidgets import QApplication

from pitchmidi.ui.main_window import MainWindow


def main():
    ap = argparse.ArgumentParser(description="pitchmidi desktop app")
    ap.add_argument("-v", "--verbose", action="store_true")
    args, qt_args = ap.parse_known_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    app = QApplication([sys.argv[0], *qt_args])
    w = MainWindow()
    w.resize(900, 480)
    w.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()

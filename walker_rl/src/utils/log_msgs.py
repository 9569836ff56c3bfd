RED = "\033[1;31m"
GREEN = "\033[1;32m"
YELLOW = "\033[1;33m"
BLUE = "\033[1;34m"
MAGENTA = "\033[1;35m"
CYAN = "\033[1;36m"
RESET = "\033[0m"

color_dict = {"red": RED, "green": GREEN,
              "yellow": YELLOW, "blue": BLUE,
              "magenta": MAGENTA, "cyan": CYAN}

# set to False to silence info/success messages (warnings and errors still print)
VERBOSE = True


def _prefix(label, color, tag):
    head = f"{color}{label}{RESET}"
    if tag:
        head = f"{head} [{tag}]"
    return head

def info_msg(message, tag=None, color=CYAN):
    if not VERBOSE:
        return
    print(f"{_prefix('Info:', set_color(color), tag)} {message}")

def warn_msg(message, tag=None, color=YELLOW):
    print(f"{_prefix('Warning:', set_color(color), tag)} {message}")

def error_msg(message, tag=None, color=RED):
    print(f"\n{_prefix('Error:', set_color(color), tag)} {message}")

def success_msg(message, tag=None, color=GREEN):
    if not VERBOSE:
        return
    print(f"{_prefix('Success:', set_color(color), tag)} {message}")

def set_color(color):
    if color in color_dict:
        return color_dict[color]
    if color in color_dict.values():
        return color
    raise ValueError(f"Color {color} is not supported.")

def color_text(text, color='magenta'):
    return f"{set_color(color)}{text}{RESET}"

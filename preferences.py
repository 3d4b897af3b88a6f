from errors import ValidationError


MOODS = ("happy", "thrilling", "thoughtful", "funny", "scary", "romantic")
ENERGY_LEVELS = ("chill", "moderate", "intense")
RUNTIMES = ("short", "medium", "long")
CONTENT_TYPES = ("movie", "tv", "both")

MOOD_LABELS = {
    "happy": "Feel Good",
    "thrilling": "Thrilling",
    "thoughtful": "Thoughtful",
    "funny": "Funny",
    "scary": "Scary",
    "romantic": "Romantic",
}
ENERGY_LABELS = {"chill": "Chill", "moderate": "Moderate", "intense": "Intense"}
RUNTIME_LABELS = {"short": "Quick (< 90 min)", "medium": "Standard (90-120 min)", "long": "Epic (2+ hours)"}
CONTENT_TYPE_LABELS = {"movie": "Movie", "tv": "TV Show", "both": "Both"}

STEP_MOOD = 0
STEP_ENERGY = 1
STEP_RUNTIME = 2
LAST_STEP = STEP_RUNTIME


def make_preferences(mood, energy, runtime, content_type="both"):
    _check_choice("mood", mood, MOODS)
    _check_choice("energy", energy, ENERGY_LEVELS)
    _check_choice("runtime", runtime, RUNTIMES)
    _check_choice("content_type", content_type, CONTENT_TYPES)
    return {
        "mood": mood,
        "energy": energy,
        "runtime": runtime,
        "content_type": content_type,
    }


def _check_choice(field, value, allowed):
    if value not in allowed:
        raise ValidationError(f"{field} must be one of {', '.join(allowed)}; got {value!r}")


class PreferenceFlow:
    """
    One participant's in-progress picks: mood, then energy, then runtime.

    Content type is optional and defaults to "both".
    """

    def __init__(self):
        self.reset()

    def reset(self):
        self.mood = None
        self.energy = None
        self.runtime = None
        self.content_type = "both"
        self.step = STEP_MOOD

    def set_mood(self, mood):
        _check_choice("mood", mood, MOODS)
        self.mood = mood

    def set_energy(self, energy):
        _check_choice("energy", energy, ENERGY_LEVELS)
        self.energy = energy

    def set_runtime(self, runtime):
        _check_choice("runtime", runtime, RUNTIMES)
        self.runtime = runtime

    def set_content_type(self, content_type):
        _check_choice("content_type", content_type, CONTENT_TYPES)
        self.content_type = content_type

    def next_step(self):
        self.step = min(self.step + 1, LAST_STEP)

    def prev_step(self):
        self.step = max(self.step - 1, STEP_MOOD)

    def go_to_step(self, step):
        self.step = max(STEP_MOOD, min(step, LAST_STEP))

    def is_complete(self):
        return self.mood is not None and self.energy is not None and self.runtime is not None

    def get_preferences(self):
        if not self.is_complete():
            return None
        return make_preferences(self.mood, self.energy, self.runtime, self.content_type)

    def state(self):
        return {
            "mood": self.mood,
            "energy": self.energy,
            "runtime": self.runtime,
            "content_type": self.content_type,
            "step": self.step,
        }

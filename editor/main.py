# editor/main.py

import sys
import os
import re
import json
import logging
import logging.config
import multiprocessing

import pygame
import pygame_gui

from tile_world import config as DEFAULTS
from tile_world.library import TileLibrary
from tile_world.session import EditorSession
from editor.camera import Camera
from editor.renderer import WorldRenderer
from editor.worker import export_world_worker

# --- UI Constants ---
UI_PANEL_WIDTH = 320
UI_ELEMENT_HEIGHT = 25
UI_SLIDER_HEIGHT = 25
UI_PADDING = 10
UI_BUTTON_HEIGHT = 40
UI_TOOL_BUTTON_HEIGHT = 30
UI_TOOL_COLUMNS = 2

# Tool buttons in panel order: (label, tool name understood by EditorSession).
TOOLS = [
    ("Raise", "raise"),
    ("Lower", "lower"),
    ("Flatten", "flatten"),
    ("Smooth", "smooth"),
    ("Grass", "grass"),
    ("Dirt", "dirt"),
    ("Rock", "rock"),
    ("Sand", "sand"),
    ("Water", DEFAULTS.WATER_MATERIAL),
    ("Carve Water", DEFAULTS.CARVE_TOOL),
]

# Refresh the stats label every N frames.
STATS_REFRESH_FRAMES = 30


class EditorState:
    """The main application state for the tile editor."""

    def __init__(self, app):
        # --- Core Application References ---
        self.app = app
        self.logger = app.logger
        self.config = app.config
        self.session: EditorSession = app.session
        self.library: TileLibrary = app.library

        self.logger.info("EditorState starting.")

        # --- 1. View Components ---
        self.view_width = app.screen_width - UI_PANEL_WIDTH
        self.view_height = app.screen_height
        self.camera = Camera(self.config, self.view_width, self.view_height)
        self.world_renderer = WorldRenderer(logger=self.logger)

        # --- 2. State Variables ---
        self.current_tool = TOOLS[0][1]
        self.stroke_active = False
        self.mouse_world_pos = None
        self.frame_count = 0
        self.go_to_menu = False
        self.is_running = True
        self._rendered_active = None

        # --- 3. Export State ---
        self.is_exporting = False
        self.export_pool = None
        self.export_result = None

        # --- 4. UI ---
        self.ui_manager = None
        self.tool_buttons = {}
        self._setup_ui()

    def _setup_ui(self):
        """Initializes the pygame_gui manager and creates the UI layout."""
        self.ui_manager = pygame_gui.UIManager((self.app.screen_width, self.app.screen_height))

        panel_rect = pygame.Rect(self.view_width, 0, UI_PANEL_WIDTH, self.app.screen_height)
        self.ui_panel = pygame_gui.elements.UIPanel(
            relative_rect=panel_rect,
            manager=self.ui_manager,
            starting_height=1
        )

        current_y = UI_PADDING
        element_width = UI_PANEL_WIDTH - (3 * UI_PADDING)

        # --- Tool Buttons (two columns) ---
        pygame_gui.elements.UILabel(
            relative_rect=pygame.Rect(UI_PADDING, current_y, element_width, UI_ELEMENT_HEIGHT),
            text="Tools",
            manager=self.ui_manager,
            container=self.ui_panel
        )
        current_y += UI_ELEMENT_HEIGHT
        button_width = (element_width - UI_PADDING) // UI_TOOL_COLUMNS
        for index, (label, tool) in enumerate(TOOLS):
            column, row = index % UI_TOOL_COLUMNS, index // UI_TOOL_COLUMNS
            rect = pygame.Rect(
                UI_PADDING + column * (button_width + UI_PADDING),
                current_y + row * (UI_TOOL_BUTTON_HEIGHT + 4),
                button_width, UI_TOOL_BUTTON_HEIGHT
            )
            button = pygame_gui.elements.UIButton(
                relative_rect=rect, text=label, manager=self.ui_manager, container=self.ui_panel
            )
            self.tool_buttons[button] = tool
        rows = (len(TOOLS) + UI_TOOL_COLUMNS - 1) // UI_TOOL_COLUMNS
        current_y += rows * (UI_TOOL_BUTTON_HEIGHT + 4) + UI_PADDING

        # --- Brush Sliders ---
        brush = self.session.brush
        self.size_label, self.size_slider, current_y = self._add_slider(
            "Brush Size", brush['size'], (0.5, 30.0), current_y, element_width)
        self.strength_label, self.strength_slider, current_y = self._add_slider(
            "Brush Strength", brush['strength'], (0.01, 1.0), current_y, element_width)
        self.falloff_label, self.falloff_slider, current_y = self._add_slider(
            "Brush Falloff", brush['falloff'], (0.0, 1.0), current_y, element_width)

        # --- Tile Mode ---
        pygame_gui.elements.UILabel(
            relative_rect=pygame.Rect(UI_PADDING, current_y, element_width, UI_ELEMENT_HEIGHT),
            text="Neighbour Tiles",
            manager=self.ui_manager,
            container=self.ui_panel
        )
        current_y += UI_ELEMENT_HEIGHT
        self.tile_mode_dropdown = pygame_gui.elements.UIDropDownMenu(
            options_list=[mode.capitalize() for mode in DEFAULTS.TILE_MODES],
            starting_option=self.session.store.tile_mode.capitalize(),
            relative_rect=pygame.Rect(UI_PADDING, current_y, element_width, UI_ELEMENT_HEIGHT),
            manager=self.ui_manager,
            container=self.ui_panel
        )
        current_y += UI_ELEMENT_HEIGHT + UI_PADDING

        # --- Tile Name & Persistence ---
        self.name_entry = pygame_gui.elements.UITextEntryLine(
            relative_rect=pygame.Rect(UI_PADDING, current_y, element_width, UI_ELEMENT_HEIGHT + 5),
            manager=self.ui_manager,
            container=self.ui_panel
        )
        self.name_entry.set_text(DEFAULTS.DEFAULT_TILE_NAME)
        current_y += UI_ELEMENT_HEIGHT + 5 + UI_PADDING

        half_width = (element_width - UI_PADDING) // 2
        self.save_button = pygame_gui.elements.UIButton(
            relative_rect=pygame.Rect(UI_PADDING, current_y, half_width, UI_BUTTON_HEIGHT),
            text="Save Tile",
            manager=self.ui_manager,
            container=self.ui_panel
        )
        self.new_button = pygame_gui.elements.UIButton(
            relative_rect=pygame.Rect(2 * UI_PADDING + half_width, current_y, half_width, UI_BUTTON_HEIGHT),
            text="New Terrain",
            manager=self.ui_manager,
            container=self.ui_panel
        )
        current_y += UI_BUTTON_HEIGHT + UI_PADDING

        self.streaming_button = pygame_gui.elements.UIButton(
            relative_rect=pygame.Rect(UI_PADDING, current_y, element_width, UI_BUTTON_HEIGHT),
            text="Streaming: Off",
            manager=self.ui_manager,
            container=self.ui_panel
        )
        current_y += UI_BUTTON_HEIGHT + UI_PADDING

        self.export_button = pygame_gui.elements.UIButton(
            relative_rect=pygame.Rect(UI_PADDING, current_y, element_width, UI_BUTTON_HEIGHT),
            text="Export World",
            manager=self.ui_manager,
            container=self.ui_panel
        )
        current_y += UI_BUTTON_HEIGHT + UI_PADDING

        # --- Stats ---
        self.stats_box = pygame_gui.elements.UITextBox(
            relative_rect=pygame.Rect(UI_PADDING, current_y, element_width, 120),
            html_text="",
            manager=self.ui_manager,
            container=self.ui_panel
        )

        self.main_menu_button = pygame_gui.elements.UIButton(
            relative_rect=pygame.Rect(UI_PADDING, self.app.screen_height - UI_BUTTON_HEIGHT - UI_PADDING, element_width, UI_BUTTON_HEIGHT),
            text="Return to Main Menu",
            manager=self.ui_manager,
            container=self.ui_panel
        )
        self._highlight_tool()

    def _add_slider(self, title: str, start_value: float, value_range: tuple, y: int, width: int):
        label = pygame_gui.elements.UILabel(
            relative_rect=pygame.Rect(UI_PADDING, y, width, UI_ELEMENT_HEIGHT),
            text=f"{title}: {start_value:.2f}",
            manager=self.ui_manager,
            container=self.ui_panel
        )
        y += UI_ELEMENT_HEIGHT
        slider = pygame_gui.elements.UIHorizontalSlider(
            relative_rect=pygame.Rect(UI_PADDING, y, width, UI_SLIDER_HEIGHT),
            start_value=start_value,
            value_range=value_range,
            manager=self.ui_manager,
            container=self.ui_panel
        )
        return label, slider, y + UI_SLIDER_HEIGHT + UI_PADDING

    def _highlight_tool(self):
        for button, tool in self.tool_buttons.items():
            if tool == self.current_tool:
                button.select()
            else:
                button.unselect()

    # --- Event Handling ---
    def handle_events(self, events):
        """Processes user input and other events for this state."""
        for event in events:
            # Pass events to the UI Manager first
            self.ui_manager.process_events(event)

            if event.type == pygame.QUIT:
                self.is_running = False
            elif event.type == pygame.KEYDOWN and event.key == pygame.K_ESCAPE:
                self.logger.info("Event: ESC key pressed. Returning to main menu.")
                self.go_to_menu = True

            elif event.type == pygame_gui.UI_HORIZONTAL_SLIDER_MOVED:
                self._on_slider_moved(event.ui_element, event.value)

            elif event.type == pygame_gui.UI_BUTTON_PRESSED:
                self._on_button_pressed(event.ui_element)

            elif event.type == pygame_gui.UI_DROP_DOWN_MENU_CHANGED:
                if event.ui_element == self.tile_mode_dropdown:
                    self.session.set_tile_mode(event.text.lower())
                    self.world_renderer.clear_cache()

            # --- Strokes (only inside the viewport) ---
            elif event.type == pygame.MOUSEBUTTONDOWN and event.button == 1:
                if event.pos[0] < self.view_width and not self.name_entry.is_focused:
                    world_x, world_z = self.camera.screen_to_world(*event.pos)
                    self.mouse_world_pos = (world_x, world_z)
                    self.session.begin_stroke(world_x, world_z)
                    self.stroke_active = True
            elif event.type == pygame.MOUSEBUTTONUP and event.button == 1:
                if self.stroke_active:
                    self._end_stroke()

            elif event.type == pygame.MOUSEMOTION:
                if event.pos[0] < self.view_width:
                    self.mouse_world_pos = self.camera.screen_to_world(*event.pos)
                else:
                    self.mouse_world_pos = None

            elif event.type == pygame.MOUSEWHEEL:
                if event.y > 0:
                    self.camera.zoom_in()
                elif event.y < 0:
                    self.camera.zoom_out()

        # Continuous key presses for panning
        if not self.name_entry.is_focused:
            keys = pygame.key.get_pressed()
            pan_speed = self.config['camera']['pan_speed_pixels']
            if keys[pygame.K_w]:
                self.camera.pan(0, -pan_speed)
            if keys[pygame.K_s]:
                self.camera.pan(0, pan_speed)
            if keys[pygame.K_a]:
                self.camera.pan(-pan_speed, 0)
            if keys[pygame.K_d]:
                self.camera.pan(pan_speed, 0)

    def _on_slider_moved(self, element, value):
        sliders = {
            self.size_slider: ('size', self.size_label, "Brush Size"),
            self.strength_slider: ('strength', self.strength_label, "Brush Strength"),
            self.falloff_slider: ('falloff', self.falloff_label, "Brush Falloff"),
        }
        entry = sliders.get(element)
        if entry:
            key, label, title = entry
            self.session.brush[key] = float(value)
            label.set_text(f"{title}: {value:.2f}")

    def _on_button_pressed(self, element):
        if element in self.tool_buttons:
            self.current_tool = self.tool_buttons[element]
            self.logger.info(f"Event: Tool set to '{self.current_tool}'.")
            self._highlight_tool()
        elif element == self.save_button:
            self._save_tile()
        elif element == self.new_button:
            self._new_terrain()
        elif element == self.streaming_button:
            enabled = not self.session.streaming.enabled
            self.session.set_streaming_enabled(enabled)
            self.streaming_button.set_text(f"Streaming: {'On' if enabled else 'Off'}")
        elif element == self.export_button:
            self._start_export()
        elif element == self.main_menu_button:
            self.logger.info("Event: 'Return to Main Menu' button pressed.")
            self.go_to_menu = True

    # --- Actions ---
    def _end_stroke(self):
        affected = self.session.end_stroke()
        self.stroke_active = False
        self.world_renderer.invalidate(affected)

    def _save_tile(self):
        name = self.name_entry.get_text().strip() or DEFAULTS.DEFAULT_TILE_NAME
        tile_id = self.session.save_active_tile(self.library, name, existing_id=self.app.current_tile_id)
        self.app.current_tile_id = tile_id
        return tile_id

    def _new_terrain(self):
        tile_config = self.config.get('tile', {})
        self.session.new_terrain(
            tile_config.get('tile_resolution'), tile_config.get('tile_size'),
            seed=tile_config.get('new_terrain_seed', DEFAULTS.DEFAULT_SEED),
        )
        self.app.current_tile_id = None
        self.name_entry.set_text(DEFAULTS.DEFAULT_TILE_NAME)

    def _start_export(self):
        if self.is_exporting:
            self.logger.warning("An export is already in progress.")
            return
        tile_id = self._save_tile()
        library_config = self.config.get('library', {})
        safe_name = re.sub(r"[^A-Za-z0-9_-]+", "_", self.name_entry.get_text().strip()) or tile_id
        output_dir = os.path.join(library_config.get('export_directory', 'exports'), safe_name)

        self.logger.info(f"Starting background export to '{output_dir}'...")
        self.is_exporting = True
        self.export_button.set_text("Exporting...")
        self.export_button.disable()

        # We only need one worker for this single task
        self.export_pool = multiprocessing.Pool(processes=1)
        self.export_result = self.export_pool.apply_async(
            export_world_worker,
            (self.library.library_dir, output_dir, library_config.get('export_grid_size', 3),
             tile_id, self.session.store.tile_mode, self.logger)
        )

    # --- Frame ---
    def update(self, time_delta):
        """Update state logic. Returns a signal for the state machine."""
        self.frame_count += 1

        # A tile installed from the browser invalidates every cached preview.
        if self.session.store.active is not self._rendered_active:
            self._rendered_active = self.session.store.active
            self.world_renderer.clear_cache()

        if self.stroke_active:
            if pygame.mouse.get_pressed()[0] and self.mouse_world_pos is not None:
                touched = self.session.apply_stroke(self.current_tool, *self.mouse_world_pos, time_delta)
                self.world_renderer.invalidate(touched)
            elif not pygame.mouse.get_pressed()[0]:
                self._end_stroke()

        self.session.update(self.camera.x, self.camera.z)
        self.ui_manager.update(time_delta)

        if self.frame_count % STATS_REFRESH_FRAMES == 0:
            self._refresh_stats()

        # --- Check for export completion ---
        if self.is_exporting and self.export_result and self.export_result.ready():
            ok = self.export_result.get()
            self.logger.info(f"Export process has completed ({'success' if ok else 'failed'}).")
            self.export_pool.close()
            self.export_pool.join()

            self.is_exporting = False
            self.export_pool = None
            self.export_result = None

            self.export_button.enable()
            self.export_button.set_text("Export Complete!" if ok else "Export Failed")

        if self.go_to_menu:
            self.go_to_menu = False
            return ("GOTO_STATE", "main_menu")

        if not self.is_running:
            return ("QUIT", None)
        return None

    def _refresh_stats(self):
        stats = self.session.get_stats()
        tiles, streaming, foliage = stats['tiles'], stats['streaming'], stats['foliage']
        self.stats_box.set_text(
            f"Tiles: {tiles['materialized']} loaded, {tiles['dirty']} dirty<br>"
            f"Cells: {streaming['loaded_cells']} loaded, {streaming['loading_cells']} loading, "
            f"{streaming['queue_length']} queued<br>"
            f"Foliage: {foliage['chunks']} chunks, {foliage['total_instances']} instances, "
            f"{foliage['impostors']} impostors<br>"
            f"Zoom: {self.camera.zoom:.2f}"
        )

    def draw(self, screen):
        """Renders the scene for this state."""
        screen.fill((15, 15, 25))
        self.world_renderer.draw_tiles(screen, self.camera, self.session)
        self.world_renderer.draw_foliage(screen, self.camera, self.session)
        self.world_renderer.draw_streaming_overlay(screen, self.camera, self.session)
        self.world_renderer.draw_brush_cursor(screen, self.camera, self.mouse_world_pos, self.session.brush['size'])
        self.ui_manager.draw_ui(screen)


class MainMenuState:
    """The main menu state, acting as the application's central hub."""

    def __init__(self, app):
        self.app = app
        self.logger = app.logger
        self.ui_manager = pygame_gui.UIManager((app.screen_width, app.screen_height))

        self.next_state = None
        self._setup_ui()

    def _setup_ui(self):
        """Creates the UI for the main menu."""
        button_width = 300
        button_height = 50
        button_y_start = (self.app.screen_height - (3 * button_height + 2 * UI_PADDING)) // 2
        button_x = (self.app.screen_width - button_width) // 2

        self.editor_button = pygame_gui.elements.UIButton(
            relative_rect=pygame.Rect(button_x, button_y_start, button_width, button_height),
            text="Tile Editor",
            manager=self.ui_manager
        )
        self.browser_button = pygame_gui.elements.UIButton(
            relative_rect=pygame.Rect(button_x, button_y_start + button_height + UI_PADDING, button_width, button_height),
            text="Tile Library",
            manager=self.ui_manager
        )
        self.quit_button = pygame_gui.elements.UIButton(
            relative_rect=pygame.Rect(button_x, button_y_start + 2 * (button_height + UI_PADDING), button_width, button_height),
            text="Quit",
            manager=self.ui_manager
        )

    def handle_events(self, events):
        """Processes user input for the main menu."""
        for event in events:
            self.ui_manager.process_events(event)

            if event.type == pygame.QUIT:
                self.next_state = ("QUIT", None)
            elif event.type == pygame.KEYDOWN and event.key == pygame.K_ESCAPE:
                self.next_state = ("QUIT", None)
            elif event.type == pygame_gui.UI_BUTTON_PRESSED:
                if event.ui_element == self.editor_button:
                    self.logger.info("Event: 'Tile Editor' button pressed.")
                    self.next_state = ("GOTO_STATE", "editor")
                elif event.ui_element == self.browser_button:
                    self.logger.info("Event: 'Tile Library' button pressed.")
                    self.app.states["browser"].refresh()
                    self.next_state = ("GOTO_STATE", "browser")
                elif event.ui_element == self.quit_button:
                    self.next_state = ("QUIT", None)

    def update(self, time_delta):
        """Update state logic. Returns a signal for the state machine."""
        self.ui_manager.update(time_delta)

        if self.next_state:
            signal = self.next_state
            self.next_state = None
            return signal
        return None

    def draw(self, screen):
        """Renders the main menu."""
        screen.fill((20, 20, 40))
        self.ui_manager.draw_ui(screen)


class TileBrowserState:
    """
    A state for browsing the tile library: load a tile into the editor,
    or delete it.
    """
    def __init__(self, app):
        self.app = app
        self.logger = app.logger
        self.library: TileLibrary = app.library
        self.ui_manager = pygame_gui.UIManager((app.screen_width, app.screen_height))

        self.next_state = None
        self.tile_entries = {}  # Display text -> tile id
        self.selected_tile_id = None

        self._setup_ui()
        self.refresh()

    def _setup_ui(self):
        """Creates the UI for the browser."""
        self.back_button = pygame_gui.elements.UIButton(
            relative_rect=pygame.Rect(10, 10, 200, 40),
            text="Back to Main Menu",
            manager=self.ui_manager
        )

        list_width = 500
        list_height = self.app.screen_height - 150
        list_x = (self.app.screen_width - list_width) // 2
        self.tile_list = pygame_gui.elements.UISelectionList(
            relative_rect=pygame.Rect(list_x, 60, list_width, list_height),
            item_list=[],
            manager=self.ui_manager
        )

        button_width = 200
        button_y = self.app.screen_height - 80
        self.load_button = pygame_gui.elements.UIButton(
            relative_rect=pygame.Rect(list_x, button_y, button_width, 50),
            text="Load Selected Tile",
            manager=self.ui_manager
        )
        self.delete_button = pygame_gui.elements.UIButton(
            relative_rect=pygame.Rect(list_x + list_width - button_width, button_y, button_width, 50),
            text="Delete Selected Tile",
            manager=self.ui_manager
        )
        self.load_button.disable()
        self.delete_button.disable()

    def refresh(self):
        """Rebuilds the selection list from the library."""
        self.tile_entries = {
            f"{ref['name']}  [{ref['resolution']} @ {ref['size']:g}]  {ref['id']}": ref['id']
            for ref in self.library.get_tile_list()
        }
        self.selected_tile_id = None
        self.tile_list.set_item_list(list(self.tile_entries.keys()))
        self.load_button.disable()
        self.delete_button.disable()
        self.logger.info(f"Tile browser lists {len(self.tile_entries)} tile(s).")

    def _load_selected(self):
        raster = self.library.load_tile(self.selected_tile_id)
        if raster is None:
            self.logger.error(f"Tile {self.selected_tile_id} is no longer in the library.")
            self.refresh()
            return
        self.app.session.install_tile(raster)
        self.app.current_tile_id = self.selected_tile_id
        editor = self.app.states["editor"]
        editor.name_entry.set_text(self.library.get_tile(self.selected_tile_id)['name'])
        self.logger.info(f"Loaded tile {self.selected_tile_id} into the editor.")
        self.next_state = ("GOTO_STATE", "editor")

    def handle_events(self, events):
        """Processes user input for the browser."""
        for event in events:
            self.ui_manager.process_events(event)

            if event.type == pygame.QUIT:
                self.next_state = ("QUIT", None)
            elif event.type == pygame.KEYDOWN and event.key == pygame.K_ESCAPE:
                self.next_state = ("GOTO_STATE", "main_menu")
            elif event.type == pygame_gui.UI_BUTTON_PRESSED:
                if event.ui_element == self.back_button:
                    self.next_state = ("GOTO_STATE", "main_menu")
                elif event.ui_element == self.load_button and self.selected_tile_id:
                    self._load_selected()
                elif event.ui_element == self.delete_button and self.selected_tile_id:
                    if self.app.current_tile_id == self.selected_tile_id:
                        self.app.current_tile_id = None
                    self.library.delete_tile(self.selected_tile_id)
                    self.refresh()

            elif event.type == pygame_gui.UI_SELECTION_LIST_NEW_SELECTION:
                if event.ui_element == self.tile_list:
                    self.selected_tile_id = self.tile_entries.get(event.text)
                    if self.selected_tile_id:
                        self.load_button.enable()
                        self.delete_button.enable()
                    else:
                        self.load_button.disable()
                        self.delete_button.disable()

    def update(self, time_delta):
        """Update state logic. Returns a signal for the state machine."""
        self.ui_manager.update(time_delta)

        if self.next_state:
            signal = self.next_state
            self.next_state = None
            return signal
        return None

    def draw(self, screen):
        """Renders the browser."""
        screen.fill((40, 20, 20))
        self.ui_manager.draw_ui(screen)


class Application:
    """The main application class, responsible for managing states and the main loop."""

    def __init__(self):
        self._setup_logging()
        self.logger.info("Application starting.")
        self.config = self._load_config()

        self._setup_pygame()

        # --- Shared Editing Session ---
        self.session = EditorSession(self.config, self.logger)
        library_dir = self.config.get('library', {}).get('directory', DEFAULTS.TILE_LIBRARY_DIR)
        self.library = TileLibrary(library_dir, self.logger)
        self.current_tile_id = None
        tile_config = self.config.get('tile', {})
        self.session.new_terrain(seed=tile_config.get('new_terrain_seed', DEFAULTS.DEFAULT_SEED))

        # --- State Machine ---
        self.states = {
            "main_menu": MainMenuState(self),
            "editor": EditorState(self),
            "browser": TileBrowserState(self)
        }
        self.active_state_name = "main_menu"
        self.active_state = self.states[self.active_state_name]
        self.is_running = True

    def _setup_logging(self):
        """Initializes the logging system from a config file."""
        log_config_path = 'editor/logging_config.json'
        log_dir = 'logs'
        if not os.path.exists(log_dir):
            os.makedirs(log_dir)
        with open(log_config_path, 'rt') as f:
            log_config = json.load(f)
        log_config['handlers']['file']['filename'] = os.path.join(log_dir, 'editor.log')
        logging.config.dictConfig(log_config)
        self.logger = logging.getLogger(__name__)

    def _load_config(self) -> dict:
        """Loads application parameters from the config file."""
        config_path = 'editor/config.json'
        self.logger.info(f"Loading configuration from {config_path}")
        try:
            with open(config_path, 'r') as f:
                return json.load(f)
        except FileNotFoundError:
            self.logger.critical(f"Configuration file not found at {config_path}. Exiting.")
            sys.exit(1)
        except json.JSONDecodeError:
            self.logger.critical(f"Error decoding JSON from {config_path}. Exiting.")
            sys.exit(1)

    def _setup_pygame(self):
        """Initializes Pygame and the display window."""
        pygame.init()
        display_config = self.config['display']
        self.screen_width = display_config['screen_width']
        self.screen_height = display_config['screen_height']

        if display_config.get('fullscreen', False):
            self.logger.info("Initializing display in Fullscreen mode.")
            self.screen = pygame.display.set_mode((0, 0), pygame.FULLSCREEN)
            self.screen_width, self.screen_height = self.screen.get_size()
        else:
            self.logger.info(f"Initializing display in Windowed mode ({self.screen_width}x{self.screen_height}).")
            self.screen = pygame.display.set_mode((self.screen_width, self.screen_height))

        pygame.display.set_caption("Tile World Editor")
        self.clock = pygame.time.Clock()
        self.tick_rate = display_config['clock_tick_rate']
        self.logger.info("Pygame initialized successfully.")

    def run(self):
        """The main application loop that drives the active state."""
        try:
            while self.is_running:
                time_delta = self.clock.tick(self.tick_rate) / 1000.0

                events = pygame.event.get()
                self.active_state.handle_events(events)

                signal = self.active_state.update(time_delta)

                # --- Handle State Transitions ---
                if signal:
                    signal_type, state_name = signal
                    if signal_type == "QUIT":
                        self.is_running = False
                    elif signal_type == "GOTO_STATE":
                        self.logger.info(f"Transitioning from state '{self.active_state_name}' to '{state_name}'...")
                        self.active_state_name = state_name
                        self.active_state = self.states[state_name]

                self.active_state.draw(self.screen)
                pygame.display.flip()

        except Exception:
            self.logger.critical("An unhandled exception occurred in the main loop!", exc_info=True)
        finally:
            self.logger.info("Exiting application.")
            dirty = self.session.store.dirty_tiles()
            if dirty:
                self.logger.warning(f"Exiting with {len(dirty)} unsaved tile(s): {dirty}")
            pygame.quit()
            sys.exit()


if __name__ == '__main__':
    app = Application()
    app.run()
